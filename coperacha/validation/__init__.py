"""Input validation package."""

from coperacha.validation.validator import (
    ValidationError,
    is_valid_address,
    is_valid_email,
    parse_address_list,
    parse_yes_no,
    require_address_list,
)

__all__ = [
    "ValidationError",
    "is_valid_address",
    "is_valid_email",
    "parse_address_list",
    "parse_yes_no",
    "require_address_list",
]
