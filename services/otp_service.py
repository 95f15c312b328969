"""
One-time passcode issuing and verification.

Challenges live in memory only, keyed by normalized email. One OtpStore is
created per application (see app.py lifespan) and passed to whoever needs it.
"""
import asyncio
import secrets
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from core.errors import OtpExpiredError, OtpMismatchError, OtpNotFoundError
from core.logger import logger
from core.validators import normalize_email


@dataclass(frozen=True)
class OtpChallenge:
    code: str
    expires_at: float


def generate_code() -> str:
    """Six decimal digits in [100000, 999999]."""
    return str(100000 + secrets.randbelow(900000))


class OtpStore:
    """
    Single-use, time-limited codes.

    Args:
        ttl_seconds: Lifetime of an issued code
        clock: Returns the current time in seconds; injectable for tests
    """

    def __init__(self, ttl_seconds: int = 60, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._challenges: Dict[str, OtpChallenge] = {}
        self._lock = threading.Lock()

    def issue(self, email: str) -> str:
        """Create a fresh code for the email, replacing any live one."""
        key = normalize_email(email)
        code = generate_code()
        with self._lock:
            self._challenges[key] = OtpChallenge(code=code, expires_at=self.clock() + self.ttl_seconds)
        logger.info(f"OTP issued for {key} (valid {self.ttl_seconds}s)")
        return code

    def verify(self, email: str, code: str) -> None:
        """
        Consume the challenge for an email.

        Raises:
            OtpNotFoundError: No live challenge (never issued, already used, or swept)
            OtpExpiredError: The challenge expired; it is removed
            OtpMismatchError: Wrong code; the challenge stays usable until expiry
        """
        key = normalize_email(email)
        with self._lock:
            challenge = self._challenges.get(key)
            if challenge is None:
                raise OtpNotFoundError()
            if self.clock() > challenge.expires_at:
                del self._challenges[key]
                raise OtpExpiredError()
            if str(code).strip() != challenge.code:
                raise OtpMismatchError()
            del self._challenges[key]
        logger.info(f"OTP verified for {key}")

    def pending(self, email: str) -> Optional[OtpChallenge]:
        """The live challenge for an email, if any. Does not consume it."""
        with self._lock:
            return self._challenges.get(normalize_email(email))

    def sweep(self) -> int:
        """Drop expired challenges. Returns how many were removed."""
        now = self.clock()
        removed = 0
        with self._lock:
            for key, challenge in list(self._challenges.items()):
                if now > challenge.expires_at:
                    del self._challenges[key]
                    removed += 1
        if removed:
            logger.debug(f"OTP sweep removed {removed} expired challenge(s)")
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._challenges)


class OtpSweeper:
    """Background task calling OtpStore.sweep() at a fixed interval."""

    def __init__(self, store: OtpStore, interval_seconds: float = 30):
        self.store = store
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    async def _run(self):
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                self.store.sweep()
            except Exception as e:
                logger.error(f"OTP sweep failed: {e}", exc_info=True)

    def start(self):
        if self._task is None:
            self._task = asyncio.create_task(self._run())
            logger.info(f"OTP sweeper started (every {self.interval_seconds}s)")

    async def stop(self):
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
