import re

from passlib.context import CryptContext

from backend.app.core.config import settings

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.password_hash_rounds,
)

_HAS_LETTER = re.compile(r"[A-Za-z]")
_HAS_DIGIT = re.compile(r"\d")

# bcrypt ignores everything past this many bytes
PASSWORD_MAX_BYTES = 72


def hash_password(plain: str) -> str:
    return pwd_context.hash(plain)


def password_fits(plain: str) -> bool:
    return len(plain.encode("utf-8")) <= PASSWORD_MAX_BYTES


def verify_password(plain: str, password_hash: str) -> bool:
    if not password_fits(plain):
        return False
    return pwd_context.verify(plain, password_hash)


def password_is_strong(plain: str) -> bool:
    """Minimum policy: configured length, at least one letter and one digit."""
    return (
        len(plain) >= settings.password_min_length
        and bool(_HAS_LETTER.search(plain))
        and bool(_HAS_DIGIT.search(plain))
    )
