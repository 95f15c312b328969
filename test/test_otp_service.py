"""
OTP issuing, single use and expiry.
"""
import pytest

from core.errors import OtpExpiredError, OtpMismatchError, OtpNotFoundError
from services.otp_service import OtpStore, generate_code


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return OtpStore(ttl_seconds=60, clock=clock)


def test_generated_codes_are_six_digits():
    for _ in range(200):
        code = generate_code()
        assert len(code) == 6
        assert 100000 <= int(code) <= 999999


def test_code_is_single_use(store):
    code = store.issue("a@x.com")
    store.verify("a@x.com", code)
    with pytest.raises(OtpNotFoundError):
        store.verify("a@x.com", code)


def test_verify_normalizes_email(store):
    code = store.issue("  Alice@Example.COM ")
    store.verify("alice@example.com", code)


def test_wrong_code_keeps_challenge_alive(store):
    code = store.issue("a@x.com")
    wrong = "000000" if code != "000000" else "111111"
    with pytest.raises(OtpMismatchError):
        store.verify("a@x.com", wrong)
    store.verify("a@x.com", code)


def test_expired_code_is_rejected_and_removed(store, clock):
    code = store.issue("a@x.com")
    clock.advance(61)
    with pytest.raises(OtpExpiredError):
        store.verify("a@x.com", code)
    assert store.pending("a@x.com") is None


def test_code_valid_until_ttl(store, clock):
    code = store.issue("a@x.com")
    clock.advance(60)
    store.verify("a@x.com", code)


def test_reissue_replaces_previous_code(store):
    first = store.issue("a@x.com")
    second = store.issue("a@x.com")
    if first != second:
        with pytest.raises(OtpMismatchError):
            store.verify("a@x.com", first)
    store.verify("a@x.com", second)


def test_unknown_email_has_no_challenge(store):
    with pytest.raises(OtpNotFoundError):
        store.verify("nobody@x.com", "123456")


def test_sweep_removes_only_expired(store, clock):
    store.issue("old@x.com")
    clock.advance(45)
    store.issue("new@x.com")
    clock.advance(30)
    assert store.sweep() == 1
    assert store.pending("old@x.com") is None
    assert store.pending("new@x.com") is not None
    assert len(store) == 1
