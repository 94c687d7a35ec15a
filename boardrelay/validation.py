"""
Identifier validation.

Trello ids are 24 character hexadecimal strings; Discord snowflakes are
17-19 digit numbers. Validation happens before any store or network call.
"""

from __future__ import annotations

import re

from boardrelay.errors import ValidationError

TRELLO_ID_PATTERN = re.compile(r"^[a-f\d]{24}$", re.IGNORECASE)
SNOWFLAKE_PATTERN = re.compile(r"^\d{17,19}$")


def validate_trello_id(value: str | None, field: str = "Trello ID") -> str:
    """
    Validate a Trello object id.

    Returns:
        The id unchanged

    Raises:
        ValidationError: If the id is missing or malformed
    """
    if not value or not isinstance(value, str):
        raise ValidationError(field, value, "is required and must be a string")
    if not TRELLO_ID_PATTERN.match(value):
        raise ValidationError(
            field, value, "Trello IDs should be 24 character hexadecimal strings"
        )
    return value


def validate_board_id(board_id: str | None) -> str:
    return validate_trello_id(board_id, "board_id")


def validate_list_id(list_id: str | None) -> str:
    return validate_trello_id(list_id, "list_id")


def validate_snowflake(value: str | None, field: str = "Discord ID") -> str:
    """Validate a Discord snowflake (guild, channel or user id)."""
    if not value or not isinstance(value, str):
        raise ValidationError(field, value, "is required and must be a string")
    if not SNOWFLAKE_PATTERN.match(value):
        raise ValidationError(field, value, "Discord IDs should be 17-19 digit numbers")
    return value
