"""
Shared test fixtures.

This module provides:
  - rsa_keypair / other_rsa_keypair: 2048-bit PEM keypairs (session scoped)
  - clock: controllable time source, aligned to the middle of a TOTP step
  - hasher, engine, token_service: the primitives
  - system: every service and in-memory store wired together; reset
    tokens handed to the mailer land in system.outbox
  - helpers to register users and enroll MFA without repeating the dance
"""

from types import SimpleNamespace

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from credvault.auth.credentials import CredentialManager
from credvault.auth.login import LoginOrchestrator
from credvault.auth.mfa import MfaManager
from credvault.auth.passwords import PasswordHasher
from credvault.auth.reset import PasswordResetManager
from credvault.auth.stores import (
    InMemoryChallengeStore,
    InMemoryCredentialStore,
    InMemoryFailureCounter,
    InMemoryResetTokenStore,
    InMemorySessionStore,
    InMemorySetupStore,
    InMemoryTokenBlacklist,
)
from credvault.auth.tokens import TokenService
from credvault.auth.totp import TotpEngine
from credvault.config import LoginConfig, TokenConfig, TotpConfig
from credvault.core_crypto.secret_box import SecretBox
from credvault.integration.event_logger import AuditTrail


# 1_700_000_010 is a multiple of 30, so this sits 15 s into a TOTP step
T0 = 1_700_000_025.0

PASSWORD = "Correct-Horse-42!"


class FakeClock:
    """Time source the tests move by hand."""

    def __init__(self, now: float = T0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_keypair(bits: int = 2048):
    """Return (private_pem, public_pem) strings for a fresh RSA key."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=bits)
    private_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode('ascii')
    public_pem = key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode('ascii')
    return private_pem, public_pem


def wrong_code(engine: TotpEngine, secret: str, at: float) -> str:
    """A well-formed code that is not valid anywhere in the drift window."""
    period = engine.config.period
    valid = {engine.generate_token(secret, at=at + offset * period) for offset in (-1, 0, 1)}
    for candidate in ("000000", "111111", "222222", "333333", "444444"):
        if candidate not in valid:
            return candidate
    raise AssertionError("no wrong code available")


@pytest.fixture(scope="session")
def rsa_keypair():
    return make_keypair()


@pytest.fixture(scope="session")
def other_rsa_keypair():
    return make_keypair()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(scope="session")
def hasher():
    return PasswordHasher()


@pytest.fixture
def engine(hasher):
    return TotpEngine(hasher, TotpConfig())


@pytest.fixture
def token_config(rsa_keypair):
    private_pem, public_pem = rsa_keypair
    return TokenConfig(private_key=private_pem, public_key=public_pem)


@pytest.fixture
def token_service(token_config, clock):
    return TokenService(token_config, clock=clock)


@pytest.fixture
def system(hasher, token_service, clock):
    """All services over fresh in-memory stores, sharing one fake clock."""
    config = LoginConfig()
    events = []
    audit = AuditTrail(clock)
    audit.add_sink(events.append)

    store = InMemoryCredentialStore(clock)
    setups = InMemorySetupStore(clock)
    engine = TotpEngine(hasher, TotpConfig())
    credentials = CredentialManager(hasher, store, audit)
    mfa = MfaManager(hasher, engine, store, setups, SecretBox(SecretBox.generate_key()),
                     config, audit, clock)
    failures = InMemoryFailureCounter(
        max_attempts=config.lockout_threshold,
        lockout_duration=config.lockout_duration,
        window_seconds=config.attempt_window,
        clock=clock,
    )
    challenges = InMemoryChallengeStore(clock)
    blacklist = InMemoryTokenBlacklist(clock)
    sessions = InMemorySessionStore(clock)
    orchestrator = LoginOrchestrator(
        hasher, credentials, mfa, token_service, store, challenges,
        failures, blacklist, config, audit, clock, sessions=sessions,
    )
    outbox = []
    resets = InMemoryResetTokenStore(clock)
    reset_manager = PasswordResetManager(
        hasher, store, resets, lambda email, token: outbox.append((email, token)),
        sessions=sessions, config=config, audit=audit, clock=clock,
    )
    return SimpleNamespace(
        clock=clock,
        config=config,
        events=events,
        audit=audit,
        hasher=hasher,
        engine=engine,
        store=store,
        setups=setups,
        challenges=challenges,
        failures=failures,
        blacklist=blacklist,
        sessions=sessions,
        resets=resets,
        outbox=outbox,
        credentials=credentials,
        mfa=mfa,
        tokens=token_service,
        login=orchestrator,
        reset=reset_manager,
    )


def register(system, email="alice@example.com", password=PASSWORD, **kwargs):
    return system.credentials.register(email, password, **kwargs)


def enroll_mfa(system, record, password=PASSWORD):
    """Enable MFA for record; returns (base32 secret, plaintext backup codes)."""
    setup = system.mfa.begin_setup(record.user_id, password)
    code = system.engine.generate_token(setup.secret, at=system.clock())
    codes = system.mfa.confirm_setup(setup.setup_token, code)
    return setup.secret, codes
