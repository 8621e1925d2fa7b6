"""
Security utilities for password hashing, code generation and log masking
"""

import hashlib
import secrets
import uuid
from typing import Optional

from passlib.context import CryptContext

from secure_credentials.core.config import settings


# Password hashing context using salted PBKDF2-SHA512
pwd_context = CryptContext(
    schemes=["pbkdf2_sha512"],
    deprecated="auto",
    pbkdf2_sha512__rounds=settings.PASSWORD_HASH_ROUNDS
)


def hash_password(password: str) -> str:
    """
    Hash a password with a per-hash random salt

    Args:
        password: Plain text password

    Returns:
        Modular-crypt hash string (algorithm, rounds, salt and digest)
    """
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """An empty or missing stored hash never verifies"""
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def generate_verification_code() -> str:
    """
    Generate a 6-digit numeric verification code

    Uniform over [100000, 999999], drawn from the OS CSPRNG.
    """
    return str(100000 + secrets.randbelow(900000))


def generate_challenge_id() -> str:
    """Generate an opaque challenge identifier (UUID4, 122 random bits)"""
    return str(uuid.uuid4())


def generate_nonce(length: int = 32) -> str:
    """
    Generate a URL-safe nonce for signed challenges

    Args:
        length: Number of random bytes

    Returns:
        Nonce string
    """
    return secrets.token_urlsafe(length)


def generate_backup_codes(count: int = 8) -> list[str]:
    """
    Generate single-use backup codes

    Args:
        count: Number of backup codes to generate

    Returns:
        List of codes formatted as XXXX-XXXX (uppercase hex)
    """
    codes = []
    for _ in range(count):
        code = secrets.token_hex(4).upper()
        codes.append(f"{code[:4]}-{code[4:]}")
    return codes


def normalize_backup_code(code: str) -> str:
    """Uppercase and strip separators so 'abcd1234' matches 'ABCD-1234'"""
    return code.replace("-", "").replace(" ", "").strip().upper()


def hash_backup_code(code: str) -> str:
    """Hash a backup code for storage"""
    return hashlib.sha256(normalize_backup_code(code).encode()).hexdigest()


def mask_email(email: str) -> str:
    """alice@x.com -> a***e@x.com; local parts of two characters or less are fully starred"""
    if '@' not in email:
        return email

    local, domain = email.split('@', 1)
    if len(local) <= 2:
        masked_local = '*' * len(local)
    else:
        masked_local = f"{local[0]}***{local[-1]}"

    return f"{masked_local}@{domain}"


def mask_ip(ip: str) -> str:
    """Hide the last IPv4 octet; other formats are truncated"""
    if not ip:
        return ""
    parts = ip.split('.')
    if len(parts) == 4:  # IPv4
        parts[-1] = 'xxx'
        return '.'.join(parts)
    else:  # IPv6 or other format
        return ip[:20] + '...'


def constant_time_compare(a: Optional[str], b: Optional[str]) -> bool:
    """Compare codes without leaking the matching prefix length through timing"""
    if a is None or b is None:
        return False
    return secrets.compare_digest(a.encode(), b.encode())
