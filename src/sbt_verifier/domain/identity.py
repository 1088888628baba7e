"""CPF normalization, validation and one-way identity hashing.

The identity hash is what gets stored in the uniqueness ledger and sent to
the credential contract as ``bytes32``. The raw CPF never leaves this module
in clear text, and logs only ever see ``mask_cpf`` output or a hash prefix.

Hashing:
- Without a pepper: SHA-256 of the 11 normalized digits
- With a pepper: HMAC-SHA256(pepper, digits)
"""

import hashlib
import hmac
import re

CPF_LENGTH = 11

_NON_DIGITS = re.compile(r"\D")


def normalize_cpf(cpf: str) -> str:
    """Strip everything but digits from a CPF.

    Args:
        cpf: CPF in any formatting (e.g., "123.456.789-09")

    Returns:
        Digits-only CPF

    Raises:
        ValueError: If the CPF is empty or does not have 11 digits
    """
    if not cpf:
        raise ValueError("CPF cannot be empty")

    digits = _NON_DIGITS.sub("", cpf)

    if len(digits) != CPF_LENGTH:
        raise ValueError(f"CPF must have {CPF_LENGTH} digits, got {len(digits)}")

    return digits


def _check_digit(digits: str) -> int:
    weight = len(digits) + 1
    total = sum(int(d) * (weight - i) for i, d in enumerate(digits))
    remainder = 11 - (total % 11)
    return 0 if remainder >= 10 else remainder


def is_valid_cpf(cpf: str) -> bool:
    """Check the two CPF verification digits.

    Args:
        cpf: CPF in any formatting

    Returns:
        True if the CPF normalizes to 11 digits with correct check digits
    """
    try:
        digits = normalize_cpf(cpf)
    except ValueError:
        return False

    first = _check_digit(digits[:9])
    second = _check_digit(digits[:10])
    return digits[9] == str(first) and digits[10] == str(second)


def hash_identity(cpf: str, pepper: str = "") -> str:
    """Compute the identity hash of a CPF.

    Args:
        cpf: CPF in any formatting
        pepper: Optional secret mixed in with HMAC

    Returns:
        64-character lowercase hex digest

    Raises:
        ValueError: If the CPF cannot be normalized
    """
    digits = normalize_cpf(cpf).encode("utf-8")

    if pepper:
        return hmac.new(pepper.encode("utf-8"), digits, hashlib.sha256).hexdigest()

    return hashlib.sha256(digits).hexdigest()


def mask_cpf(cpf: str) -> str:
    """Mask a CPF for logging (keeps the first three digits)."""
    digits = _NON_DIGITS.sub("", cpf or "")
    return f"{digits[:3]}***" if digits else "***"


class IdentityHasher:
    """Callable hasher bound to a pepper, injected into the pipeline."""

    def __init__(self, pepper: str = ""):
        self._pepper = pepper

    def __call__(self, cpf: str) -> str:
        return hash_identity(cpf, self._pepper)
