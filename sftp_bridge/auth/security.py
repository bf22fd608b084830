from passlib.context import CryptContext

# Password hashing - truncate to 72 bytes for bcrypt compatibility
pwd_context = CryptContext(
    schemes=["bcrypt"], deprecated="auto", bcrypt__truncate_error=False
)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its bcrypt hash; malformed hashes never verify."""
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError):
        return False


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def dummy_verify() -> None:
    """Burn one hash verification so unknown users cost the same as bad passwords."""
    pwd_context.dummy_verify()
