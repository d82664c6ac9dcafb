"""
Security Module

Password hashing and opaque token generation.

SECURITY NOTES:
- Passwords are hashed with bcrypt through passlib. The hash is treated as
  an opaque verifier; nothing else in the code base parses it.
- Session tokens are random and opaque. They mean nothing without the
  sessions table, so revoking one is a single DELETE.
"""
import secrets
from passlib.context import CryptContext
from voucherhub.config import get_settings

settings = get_settings()

# TRADEOFF: Higher rounds = more secure but slower. Tests run with 4.
pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.BCRYPT_ROUNDS,
)

SESSION_TOKEN_BYTES = 32


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a password against its hash.

    Uses constant-time comparison to prevent timing attacks.
    """
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """
    Hash a password using bcrypt.

    NOTE: This is intentionally slow to prevent brute force attacks.
    Don't call this in hot paths or tight loops.
    """
    return pwd_context.hash(password)


def generate_session_token() -> str:
    """URL-safe random token, 256 bits of entropy."""
    return secrets.token_urlsafe(SESSION_TOKEN_BYTES)


def random_string(alphabet: str, length: int) -> str:
    return "".join(secrets.choice(alphabet) for _ in range(length))
