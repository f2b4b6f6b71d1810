"""
Credential generation for newly provisioned instances.
"""
import secrets
import string

PASSWORD_LENGTH = 16

# RDS rejects '/', '"', '@' and spaces in master passwords; stay alphanumeric.
_ALPHABET = string.ascii_letters + string.digits


def generate_password(length: int = PASSWORD_LENGTH) -> str:
    """
    Generate a random master password.

    Args:
        length: Number of characters (default: 16)

    Returns:
        Alphanumeric password from a cryptographically secure source
    """
    if length < 8:
        raise ValueError("Password length must be at least 8")
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))
