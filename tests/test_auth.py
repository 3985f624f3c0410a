"""
Unit tests for the credential primitives.

Tests:
- Password hashing (Argon2id) and rehash detection
- Password strength policy
- HOTP/TOTP against the RFC vectors and pyotp
- TOTP drift window and structural rejection
- Backup codes
"""

import re

import argon2
import pyotp
import pytest

from credvault.auth.passwords import (
    PasswordHasher,
    calculate_password_score,
    validate_password_strength,
)
from credvault.auth.totp import (
    BACKUP_CODE_ALPHABET,
    TotpEngine,
    base32_to_secret,
    get_remaining_seconds,
    get_time_counter,
    hotp,
    secret_to_base32,
    totp,
)
from credvault.config import HashConfig, TotpConfig
from credvault.errors import ValidationError

from tests.conftest import T0


RFC_SECRET = b"12345678901234567890"


class TestPasswordHashing:
    """Unit tests for Argon2id password hashing."""

    def test_hash_is_argon2id_phc_string(self, hasher):
        """Hashes should be self-describing Argon2id strings."""
        hash_str = hasher.hash("Correct-Horse-42!")
        assert hash_str.startswith("$argon2id$v=19$m=65536,t=3,p=4$")

    def test_verify_correct_password(self, hasher):
        """Correct password should verify."""
        hash_str = hasher.hash("MySecurePassword123!")
        assert hasher.verify(hash_str, "MySecurePassword123!")

    def test_verify_wrong_password(self, hasher):
        """Wrong password should return False, not raise."""
        hash_str = hasher.hash("SecureP@ss123!Correct")
        assert hasher.verify(hash_str, "SecureP@ss123!Wrong") is False

    def test_same_password_different_hashes(self, hasher):
        """Same password should hash differently (random salt)."""
        assert hasher.hash("SecureP@ss123!") != hasher.hash("SecureP@ss123!")

    def test_hash_empty_password_rejected(self, hasher):
        """Empty password cannot be hashed."""
        with pytest.raises(ValidationError):
            hasher.hash("")

    def test_verify_empty_password_is_false(self, hasher):
        """Empty password never verifies."""
        hash_str = hasher.hash("SecureP@ss123!")
        assert hasher.verify(hash_str, "") is False

    def test_verify_malformed_hash_raises(self, hasher):
        """A string that is not a PHC hash is a validation error."""
        with pytest.raises(ValidationError):
            hasher.verify("not-a-hash", "whatever")

    def test_verify_unicode_password(self, hasher):
        """Non-ASCII passwords round-trip."""
        hash_str = hasher.hash("pässwörd-ünïcode-42")
        assert hasher.verify(hash_str, "pässwörd-ünïcode-42")


class TestNeedsRehash:
    """Parameter drift detection."""

    def test_current_parameters_do_not_need_rehash(self, hasher):
        """A hash made with the configured parameters is up to date."""
        assert hasher.needs_rehash(hasher.hash("SecureP@ss123!")) is False

    def test_weak_parameters_need_rehash(self, hasher):
        """A hash made with weaker parameters needs rehashing."""
        weak = argon2.PasswordHasher(time_cost=1, memory_cost=8, parallelism=1)
        assert hasher.needs_rehash(weak.hash("SecureP@ss123!")) is True

    def test_other_argon2_variant_needs_rehash(self, hasher):
        """Argon2i hashes get upgraded to Argon2id."""
        legacy = argon2.PasswordHasher(type=argon2.Type.I)
        assert hasher.needs_rehash(legacy.hash("SecureP@ss123!")) is True

    def test_stronger_parameters_do_not_need_rehash(self, hasher):
        """Only upgrades count; stronger hashes are left alone."""
        strong = PasswordHasher(HashConfig(time_cost=4))
        assert hasher.needs_rehash(strong.hash("SecureP@ss123!")) is False

    def test_stricter_config_flags_existing_hash(self, hasher):
        """Raising the configured cost marks old hashes for rehash."""
        stricter = PasswordHasher(HashConfig(time_cost=4))
        assert stricter.needs_rehash(hasher.hash("SecureP@ss123!")) is True

    def test_malformed_hash_raises(self, hasher):
        """Garbage input is a validation error."""
        with pytest.raises(ValidationError):
            hasher.needs_rehash("garbage")


class TestPasswordStrength:
    """Password policy validation."""

    @pytest.mark.parametrize("password,expected", [
        ("weak", False),
        ("Weakpassword", False),
        ("Weakpassword1", False),
        ("weakpassword1!", False),
        ("Short1!a", False),
        ("StrongPass12!", True),
        ("MyS3cur3P@ssw0rd!", True),
    ])
    def test_policy(self, password, expected):
        """Minimum 12 characters with upper, lower, digit and special."""
        assert validate_password_strength(password)['valid'] is expected

    def test_errors_listed(self):
        """Every failed rule is reported."""
        result = validate_password_strength("abc")
        assert len(result['errors']) == 4

    def test_too_long(self):
        """Passwords over 128 characters are rejected."""
        result = validate_password_strength("Aa1!" * 40)
        assert not result['valid']

    def test_score_range(self):
        """Scores stay within 0-100 and favour strong passwords."""
        weak = calculate_password_score("aaa")
        strong = calculate_password_score("Xk9#mQ2$vL7@pR4!wZ")
        assert 0 <= weak < strong <= 100


class TestHOTP:
    """RFC 4226 HOTP."""

    @pytest.mark.parametrize("counter,expected", list(enumerate([
        "755224", "287082", "359152", "969429", "338314",
        "254676", "287922", "162583", "399871", "520489",
    ])))
    def test_rfc4226_vectors(self, counter, expected):
        """Appendix D test values."""
        assert hotp(RFC_SECRET, counter) == expected


class TestTOTP:
    """RFC 6238 TOTP."""

    @pytest.mark.parametrize("timestamp,expected", [
        (59, "94287082"),
        (1111111109, "07081804"),
        (1111111111, "14050471"),
        (1234567890, "89005924"),
        (2000000000, "69279037"),
    ])
    def test_rfc6238_sha1_vectors(self, timestamp, expected):
        """Appendix B SHA-1 test values (8 digits)."""
        assert totp(RFC_SECRET, timestamp, digits=8) == expected

    def test_time_counter(self):
        """Counter is floor(time / step)."""
        assert get_time_counter(59) == 1
        assert get_time_counter(60) == 2
        assert get_time_counter(T0) == int(T0) // 30

    def test_remaining_seconds(self):
        """Seconds left in the current step."""
        assert get_remaining_seconds(30, T0) == 15

    def test_base32_round_trip(self):
        """Secrets survive base32 encoding without padding."""
        encoded = secret_to_base32(RFC_SECRET)
        assert '=' not in encoded
        assert base32_to_secret(encoded) == RFC_SECRET
        assert base32_to_secret(encoded.lower()) == RFC_SECRET

    def test_invalid_base32_rejected(self):
        """Bad base32 is a validation error."""
        with pytest.raises(ValidationError):
            base32_to_secret("not base32 !!")

    def test_matches_pyotp(self, engine):
        """Codes agree with an independent implementation."""
        setup = engine.generate_secret("alice@example.com")
        reference = pyotp.TOTP(setup.secret)
        for offset in (0, 30, 3600, 86400):
            at = int(T0) + offset
            assert engine.generate_token(setup.secret, at=at) == reference.at(at)

    def test_pyotp_verifies_our_codes(self, engine):
        """pyotp accepts our codes at the same instant."""
        setup = engine.generate_secret("alice@example.com")
        code = engine.generate_token(setup.secret, at=T0)
        assert pyotp.TOTP(setup.secret).verify(code, for_time=int(T0))


class TestTotpEngine:
    """Enrollment helpers and verification."""

    def test_generate_secret(self, engine):
        """160-bit secret with a provisioning URI."""
        setup = engine.generate_secret("alice@example.com")
        assert len(base32_to_secret(setup.secret)) == 20
        assert setup.qr_image is None
        assert setup.provisioning_uri == (
            f"otpauth://totp/credvault:alice@example.com?secret={setup.secret}"
            "&issuer=credvault&algorithm=SHA1&digits=6&period=30"
        )

    def test_secrets_are_unique(self, engine):
        """Every call yields a new secret."""
        assert engine.generate_secret("a@b.co").secret != engine.generate_secret("a@b.co").secret

    def test_issuer_is_escaped(self, hasher):
        """Issuer and label are URI-escaped."""
        engine = TotpEngine(hasher, TotpConfig(issuer="Acme Corp"))
        uri = engine.provisioning_uri("JBSWY3DPEHPK3PXP", "bob smith@example.com")
        assert uri.startswith("otpauth://totp/Acme%20Corp:bob%20smith@example.com?")
        assert "&issuer=Acme%20Corp&" in uri

    def test_empty_label_rejected(self, engine):
        """Label is required."""
        with pytest.raises(ValidationError):
            engine.generate_secret("")

    def test_qr_renderer_used(self, hasher):
        """A configured renderer receives the URI."""
        seen = []

        def renderer(uri):
            seen.append(uri)
            return b"png"

        engine = TotpEngine(hasher, qr_renderer=renderer)
        setup = engine.generate_secret("alice@example.com")
        assert setup.qr_image == b"png"
        assert seen == [setup.provisioning_uri]

    def test_verify_current_code(self, engine):
        """The current code verifies."""
        secret = engine.generate_secret("a@b.co").secret
        code = engine.generate_token(secret, at=T0)
        assert engine.verify_token(secret, code, at=T0)

    def test_previous_step_within_window(self, engine):
        """A code from the previous step is accepted with window=1."""
        secret = engine.generate_secret("a@b.co").secret
        code = engine.generate_token(secret, at=T0)
        assert engine.verify_token(secret, code, at=T0 + 29)
        assert engine.verify_token(secret, code, at=T0 - 30)

    def test_window_zero_is_strict(self, engine):
        """With window=0 only the current step counts."""
        secret = engine.generate_secret("a@b.co").secret
        code = engine.generate_token(secret, at=T0)
        assert engine.verify_token(secret, code, window=0, at=T0 + 14)
        assert not engine.verify_token(secret, code, window=0, at=T0 + 29)

    def test_outside_window_rejected(self, engine):
        """Codes two steps away are rejected."""
        secret = engine.generate_secret("a@b.co").secret
        code = engine.generate_token(secret, at=T0)
        assert not engine.verify_token(secret, code, at=T0 + 60)
        assert not engine.verify_token(secret, code, at=T0 - 60)

    @pytest.mark.parametrize("candidate", [
        "", "12345", "1234567", "12 3456", "abcdef", "12345a", " 123456", None, 123456,
    ])
    def test_malformed_candidates_rejected(self, engine, candidate):
        """Anything but exactly six digits is rejected outright."""
        secret = engine.generate_secret("a@b.co").secret
        assert engine.verify_token(secret, candidate, at=T0) is False

    @pytest.mark.parametrize("candidate", ["12345", "abcdef"])
    @pytest.mark.parametrize("secret", ["!!!", "", "not base32 at all"])
    def test_malformed_candidates_need_no_valid_secret(self, engine, secret, candidate):
        """The format check runs before the secret is decoded."""
        assert engine.verify_token(secret, candidate, at=T0) is False

    def test_negative_window_rejected(self, engine):
        """Negative windows are a caller error."""
        secret = engine.generate_secret("a@b.co").secret
        with pytest.raises(ValidationError):
            engine.verify_token(secret, "123456", window=-1, at=T0)

    def test_near_epoch_skips_negative_counters(self, engine):
        """Verification at t=0 does not look at negative counters."""
        secret = engine.generate_secret("a@b.co").secret
        code = engine.generate_token(secret, at=0)
        assert engine.verify_token(secret, code, at=0)

    def test_remaining_seconds(self, engine):
        """Delegates to the configured period."""
        assert engine.remaining_seconds(T0) == 15


class TestBackupCodes:
    """Single-use recovery codes."""

    def test_default_count_and_shape(self, engine):
        """Ten unique 8-character codes from the 36-symbol alphabet."""
        codes = engine.generate_backup_codes()
        assert len(codes) == 10
        assert len(set(codes)) == 10
        pattern = re.compile(r'[%s]{8}' % BACKUP_CODE_ALPHABET)
        assert all(pattern.fullmatch(code) for code in codes)

    def test_custom_count(self, engine):
        """Count is configurable per call."""
        assert len(engine.generate_backup_codes(3)) == 3

    def test_zero_count_rejected(self, engine):
        """At least one code is required."""
        with pytest.raises(ValidationError):
            engine.generate_backup_codes(0)

    def test_hash_and_verify(self, engine):
        """Codes verify against their Argon2id hash."""
        code = engine.generate_backup_codes(1)[0]
        code_hash = engine.hash_backup_code(code)
        assert code_hash.startswith("$argon2id$")
        assert engine.verify_backup_code(code_hash, code)

    def test_verify_is_case_insensitive(self, engine):
        """Lower-case input matches."""
        code = engine.generate_backup_codes(1)[0]
        code_hash = engine.hash_backup_code(code)
        assert engine.verify_backup_code(code_hash, code.lower())

    def test_wrong_code_rejected(self, engine):
        """A different code does not match."""
        first, second = engine.generate_backup_codes(2)
        assert not engine.verify_backup_code(engine.hash_backup_code(first), second)

    def test_verify_never_raises(self, engine):
        """Malformed hashes and empty codes simply fail."""
        assert engine.verify_backup_code("not-a-hash", "ABCDEFGH") is False
        assert engine.verify_backup_code(engine.hash_backup_code("ABCDEFGH"), "") is False

    def test_hash_empty_code_rejected(self, engine):
        """Empty codes cannot be hashed."""
        with pytest.raises(ValidationError):
            engine.hash_backup_code("")
