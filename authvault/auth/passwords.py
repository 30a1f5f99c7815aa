"""Password hashing and password policy."""

import asyncio
import re

from passlib.context import CryptContext

# Password validation patterns
PATTERNS = {
    "uppercase": re.compile(r"[A-Z]"),
    "lowercase": re.compile(r"[a-z]"),
    "digit": re.compile(r"\d"),
    "special": re.compile(r"[!@#$%^&*(),.?\":{}|<>_\-+=~\[\]\\/;']"),
}

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128


def validate_password(password: str) -> tuple[bool, str]:
    """Validate password strength.

    Args:
        password: The password to validate

    Returns:
        Tuple of (is_valid, message)
    """
    if len(password) < MIN_PASSWORD_LENGTH:
        return False, f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
    if len(password) > MAX_PASSWORD_LENGTH:
        return False, f"Password must be at most {MAX_PASSWORD_LENGTH} characters long"

    missing = []
    if not PATTERNS["uppercase"].search(password):
        missing.append("uppercase letter")
    if not PATTERNS["lowercase"].search(password):
        missing.append("lowercase letter")
    if not PATTERNS["digit"].search(password):
        missing.append("number")
    if not PATTERNS["special"].search(password):
        missing.append("special character")

    if missing:
        return False, f"Password must contain at least one {', '.join(missing)}"

    return True, "Password is valid"


def truncate_for_bcrypt(password: str) -> str:
    """Cut a password to bcrypt's 72-byte limit on a UTF-8 boundary."""
    password_bytes = password.encode("utf-8")
    if len(password_bytes) <= 72:
        return password
    truncated = password_bytes[:72]
    # UTF-8 continuation bytes start with 10xxxxxx (0x80-0xBF)
    while truncated and (truncated[-1] & 0xC0) == 0x80:
        truncated = truncated[:-1]
    # Drop a dangling multi-byte lead byte
    if truncated and truncated[-1] >= 0xC0:
        truncated = truncated[:-1]
    return truncated.decode("utf-8")


class PasswordHasher:
    """bcrypt hashing through passlib, run off the event loop.

    A dummy hash is computed up front so that verifying against a missing
    account costs the same as verifying against a real one.
    """

    def __init__(self, rounds: int = 12):
        """Initialize the hasher.

        Args:
            rounds: bcrypt cost factor
        """
        self.pwd_context = CryptContext(
            schemes=["bcrypt"],
            deprecated="auto",
            bcrypt__rounds=rounds,
        )
        self._dummy_hash = self.pwd_context.hash("dummy_password_for_timing")

    async def hash(self, password: str) -> str:
        return await asyncio.to_thread(
            self.pwd_context.hash, truncate_for_bcrypt(password)
        )

    async def verify(self, password: str, hashed_password: str | None) -> bool:
        """Verify a plain password against a hash.

        When ``hashed_password`` is None the dummy hash is checked instead
        and the result is always False.

        Args:
            password: The plain text password
            hashed_password: The stored hash, if any

        Returns:
            True if the password matches, False otherwise
        """
        candidate = truncate_for_bcrypt(password)
        if hashed_password is None:
            await asyncio.to_thread(self.pwd_context.verify, candidate, self._dummy_hash)
            return False
        try:
            return await asyncio.to_thread(
                self.pwd_context.verify, candidate, hashed_password
            )
        except ValueError:
            # Unrecognized hash format
            return False

    async def dummy_verify(self, password: str) -> None:
        await self.verify(password, None)
