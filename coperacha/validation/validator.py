"""
Input Validation

Pure functions that decide whether what a person typed is usable.

DESIGN DECISION: Validation is syntax-only. We never check that an
email inbox exists or that an address has ever been used on the
ledger. A failure is never fatal: the dialogue keeps its state and
asks again with a corrective message.

IMPORTANT: Validation NEVER silently fixes issues. An address list
with a single bad entry is rejected as a whole and the bad entries
are reported back.
"""

import re
from typing import Optional

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]{2,}$", re.IGNORECASE)
ADDRESS_PATTERN = re.compile(r"^0x[0-9a-f]{40}$", re.IGNORECASE)
ADDRESS_SEPARATORS = re.compile(r"[\s,;]+")

AFFIRMATIVE_TOKENS = frozenset({"sí", "si"})
NEGATIVE_TOKENS = frozenset({"no"})


class ValidationError(Exception):
    """
    User input failed a syntax check.

    Carries the offending values so the reply can list them.
    """

    def __init__(self, field: str, message: str, invalid: Optional[list[str]] = None):
        self.field = field
        self.invalid = invalid or []
        super().__init__(message)


def is_valid_email(value: str) -> bool:
    """local@domain.tld, no whitespace, TLD of at least two characters."""
    if value is None:
        return False
    return bool(EMAIL_PATTERN.match(str(value).strip()))


def is_valid_address(value: str) -> bool:
    """Exactly '0x' followed by 40 hexadecimal characters, any case."""
    if value is None:
        return False
    return bool(ADDRESS_PATTERN.fullmatch(str(value).strip()))


def parse_address_list(raw: str) -> tuple[list[str], list[str]]:
    """
    Split free text into addresses.

    Separators are commas, semicolons and any whitespace (including
    newlines). Entries are trimmed, lower-cased and deduplicated in
    first-seen order.

    Returns:
        (valid, invalid) - disjoint lists, both lower-cased
    """
    parts = [p.strip().lower() for p in ADDRESS_SEPARATORS.split(str(raw or ""))]

    unique: list[str] = []
    for part in parts:
        if part and part not in unique:
            unique.append(part)

    valid = [a for a in unique if is_valid_address(a)]
    invalid = [a for a in unique if not is_valid_address(a)]
    return valid, invalid


def require_address_list(raw: str) -> list[str]:
    """
    Parse an address list and insist it is usable.

    Raises:
        ValidationError: if nothing was entered or any entry is invalid
    """
    valid, invalid = parse_address_list(raw)
    if invalid:
        raise ValidationError(
            field="members",
            message="Some addresses are not valid",
            invalid=invalid,
        )
    if not valid:
        raise ValidationError(
            field="members",
            message="No addresses were found",
        )
    return valid


def parse_yes_no(value: str) -> Optional[bool]:
    """
    Interpret a yes/no answer.

    Returns True for 'sí'/'si', False for 'no', None for anything else.
    """
    token = str(value or "").strip().lower()
    if token in AFFIRMATIVE_TOKENS:
        return True
    if token in NEGATIVE_TOKENS:
        return False
    return None
