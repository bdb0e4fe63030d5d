"""
Password hashing (bcrypt).
"""

from passlib.context import CryptContext

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

MIN_PASSWORD_LENGTH = 8


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Check a password against a stored hash.

    Users created through a federated login have no hash; they never match.
    """
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)
