"""
Unit tests for account lifecycle: registration, password change and MFA enrollment.
"""

import pytest

from credvault.auth.mfa import MfaManager
from credvault.auth.totp import TotpEngine
from credvault.core_crypto.secret_box import SecretBox
from credvault.errors import AuthenticationFailure, ExpiredError, ValidationError
from credvault.integration.qr_renderer import render_qr_png

from tests.conftest import PASSWORD, enroll_mfa, register, wrong_code


class TestRegistration:
    """CredentialManager.register."""

    def test_register_stores_hash_only(self, system):
        """The password is stored as an Argon2id hash."""
        record = register(system)
        stored = system.store.get_by_id(record.user_id)
        assert stored.email == "alice@example.com"
        assert stored.password_hash.startswith("$argon2id$")
        assert PASSWORD not in stored.password_hash
        assert len(record.user_id) == 32

    def test_email_normalized(self, system):
        """Emails are stored trimmed and lower-cased."""
        record = register(system, email="  Alice@Example.COM ")
        assert record.email == "alice@example.com"

    def test_duplicate_email_rejected(self, system):
        """One account per email, regardless of case."""
        register(system)
        with pytest.raises(ValidationError):
            register(system, email="ALICE@example.com")

    def test_weak_password_rejected(self, system):
        """Policy is enforced before hashing."""
        with pytest.raises(ValidationError) as exc:
            register(system, password="password")
        assert "too weak" in str(exc.value)

    @pytest.mark.parametrize("email", ["", "alice", "alice@", "@example.com", "a b@example.com"])
    def test_invalid_email_rejected(self, system, email):
        """Implausible addresses are refused."""
        with pytest.raises(ValidationError):
            register(system, email=email)


class TestPasswordChange:
    """CredentialManager.change_password."""

    def test_change_password(self, system):
        """New password works, old one does not."""
        record = register(system)
        system.credentials.change_password(record.user_id, PASSWORD, "Brand-New-Pass-77")

        with pytest.raises(AuthenticationFailure):
            system.login.login("alice@example.com", PASSWORD)
        assert system.login.login("alice@example.com", "Brand-New-Pass-77").tokens

    def test_wrong_current_password(self, system):
        """Current password must be proven."""
        record = register(system)
        with pytest.raises(AuthenticationFailure):
            system.credentials.change_password(record.user_id, "Wrong-Horse-42!", "Brand-New-Pass-77")

    def test_reuse_rejected(self, system):
        """New password must differ."""
        record = register(system)
        with pytest.raises(ValidationError):
            system.credentials.change_password(record.user_id, PASSWORD, PASSWORD)

    def test_weak_new_password_rejected(self, system):
        """New password must meet the policy."""
        record = register(system)
        with pytest.raises(ValidationError):
            system.credentials.change_password(record.user_id, PASSWORD, "short")

    def test_unknown_user(self, system):
        """Unknown ids fail like a wrong password."""
        with pytest.raises(AuthenticationFailure):
            system.credentials.change_password("nobody", PASSWORD, "Brand-New-Pass-77")


class TestMfaSetup:
    """Enrollment."""

    def test_begin_setup(self, system):
        """Setup hands out a secret, URI and expiry."""
        record = register(system)
        setup = system.mfa.begin_setup(record.user_id, PASSWORD)

        assert setup.setup_token
        assert setup.provisioning_uri.startswith("otpauth://totp/credvault:alice@example.com?")
        assert f"secret={setup.secret}" in setup.provisioning_uri
        assert setup.expires_at == system.clock() + 600
        # Not enabled until confirmed
        assert not system.mfa.status(record.user_id).enabled

    def test_begin_setup_wrong_password(self, system):
        """Password is re-checked."""
        record = register(system)
        with pytest.raises(AuthenticationFailure):
            system.mfa.begin_setup(record.user_id, "Wrong-Horse-42!")

    def test_confirm_setup(self, system):
        """Confirmation enables MFA and returns ten backup codes."""
        record = register(system)
        secret, codes = enroll_mfa(system, record)

        status = system.mfa.status(record.user_id)
        assert status.enabled
        assert status.backup_codes_remaining == 10
        assert len(codes) == 10

        stored = system.store.get_by_id(record.user_id)
        assert secret not in stored.mfa_secret_encrypted
        assert all(code.code_hash.startswith("$argon2id$") for code in stored.backup_codes)

    def test_wrong_code_can_be_retried(self, system):
        """A mistyped code does not cancel the setup."""
        record = register(system)
        setup = system.mfa.begin_setup(record.user_id, PASSWORD)

        with pytest.raises(AuthenticationFailure):
            system.mfa.confirm_setup(setup.setup_token,
                                     wrong_code(system.engine, setup.secret, system.clock()))

        code = system.engine.generate_token(setup.secret, at=system.clock())
        assert len(system.mfa.confirm_setup(setup.setup_token, code)) == 10

    def test_setup_token_single_use(self, system):
        """A confirmed setup cannot be confirmed again."""
        record = register(system)
        setup = system.mfa.begin_setup(record.user_id, PASSWORD)
        code = system.engine.generate_token(setup.secret, at=system.clock())
        system.mfa.confirm_setup(setup.setup_token, code)

        with pytest.raises(ExpiredError):
            system.mfa.confirm_setup(setup.setup_token, code)

    def test_setup_expires(self, system):
        """Pending setups lapse after ten minutes."""
        record = register(system)
        setup = system.mfa.begin_setup(record.user_id, PASSWORD)
        system.clock.advance(600)
        code = system.engine.generate_token(setup.secret, at=system.clock())
        with pytest.raises(ExpiredError):
            system.mfa.confirm_setup(setup.setup_token, code)

    def test_new_setup_replaces_pending(self, system):
        """Only the latest pending setup per user is kept."""
        record = register(system)
        first = system.mfa.begin_setup(record.user_id, PASSWORD)
        system.mfa.begin_setup(record.user_id, PASSWORD)
        code = system.engine.generate_token(first.secret, at=system.clock())
        with pytest.raises(ExpiredError):
            system.mfa.confirm_setup(first.setup_token, code)

    def test_already_enabled(self, system):
        """Enrollment is refused while MFA is on."""
        record = register(system)
        enroll_mfa(system, record)
        with pytest.raises(ValidationError):
            system.mfa.begin_setup(record.user_id, PASSWORD)

    def test_qr_image_rendered(self, system, hasher):
        """With a renderer configured, setup carries a PNG."""
        record = register(system)
        mfa = MfaManager(
            hasher,
            TotpEngine(hasher, qr_renderer=render_qr_png),
            system.store,
            system.setups,
            SecretBox(SecretBox.generate_key()),
            clock=system.clock,
        )
        setup = mfa.begin_setup(record.user_id, PASSWORD)
        assert setup.qr_image.startswith(b"\x89PNG")


class TestMfaMaintenance:
    """Disable, regenerate and status."""

    def test_disable(self, system):
        """Disabling clears the secret and codes; login skips MFA."""
        record = register(system)
        secret, _ = enroll_mfa(system, record)

        code = system.engine.generate_token(secret, at=system.clock())
        system.mfa.disable(record.user_id, PASSWORD, code)

        status = system.mfa.status(record.user_id)
        assert not status.enabled
        assert status.backup_codes_remaining == 0
        assert not system.login.login("alice@example.com", PASSWORD).mfa_required

    def test_disable_requires_code(self, system):
        """Password alone is not enough."""
        record = register(system)
        secret, _ = enroll_mfa(system, record)
        with pytest.raises(AuthenticationFailure):
            system.mfa.disable(record.user_id, PASSWORD,
                               wrong_code(system.engine, secret, system.clock()))
        assert system.mfa.status(record.user_id).enabled

    def test_disable_requires_password(self, system):
        """Code alone is not enough."""
        record = register(system)
        secret, _ = enroll_mfa(system, record)
        code = system.engine.generate_token(secret, at=system.clock())
        with pytest.raises(AuthenticationFailure):
            system.mfa.disable(record.user_id, "Wrong-Horse-42!", code)

    def test_disable_when_not_enabled(self, system):
        """Nothing to disable."""
        record = register(system)
        with pytest.raises(ValidationError):
            system.mfa.disable(record.user_id, PASSWORD, "123456")

    def test_regenerate_backup_codes(self, system):
        """Old codes stop working, new ones are issued."""
        record = register(system)
        secret, old_codes = enroll_mfa(system, record)

        code = system.engine.generate_token(secret, at=system.clock())
        new_codes = system.mfa.regenerate_backup_codes(record.user_id, PASSWORD, code)

        assert len(new_codes) == 10
        assert not set(new_codes) & set(old_codes)
        assert not system.mfa.consume_backup_code(record.user_id, old_codes[0])
        assert system.mfa.consume_backup_code(record.user_id, new_codes[0])
        assert system.mfa.status(record.user_id).backup_codes_remaining == 9

    def test_status_unknown_user(self, system):
        """Status for an unknown account is an error."""
        with pytest.raises(ValidationError):
            system.mfa.status("nobody")
