"""
Brazilian CPF helpers.

The PIX gateway requires a payer document on every charge; deposits are
anonymous, so a well-formed random CPF is generated per charge.
"""

import random
import re
from typing import Optional


def _check_digit(digits: list[int]) -> int:
    """CPF check digit over digits, weights descending to 2."""
    weight = len(digits) + 1
    total = sum(d * w for d, w in zip(digits, range(weight, 1, -1)))
    remainder = 11 - (total % 11)
    return 0 if remainder >= 10 else remainder


def format_cpf(digits: str) -> str:
    return f"{digits[:3]}.{digits[3:6]}.{digits[6:9]}-{digits[9:]}"


def generate_cpf(formatted: bool = False, rng: Optional[random.Random] = None) -> str:
    """
    Generate a random CPF with valid check digits.

    Args:
        formatted: Return "000.000.000-00" instead of bare digits
        rng: Random source (for deterministic tests)
    """
    rng = rng or random.SystemRandom()
    digits = [rng.randint(0, 9) for _ in range(9)]
    digits.append(_check_digit(digits))
    digits.append(_check_digit(digits))

    cpf = "".join(str(d) for d in digits)
    return format_cpf(cpf) if formatted else cpf


def is_valid_cpf(value: str) -> bool:
    if not value or not isinstance(value, str):
        return False

    cleaned = re.sub(r"\D", "", value)
    if len(cleaned) != 11:
        return False

    digits = [int(c) for c in cleaned]
    return _check_digit(digits[:9]) == digits[9] and _check_digit(digits[:10]) == digits[10]
