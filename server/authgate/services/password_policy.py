from __future__ import annotations

import re

from ..errors import ValidationError

MIN_LENGTH = 8

POLICY_MESSAGE = (
    "Password must be at least 8 characters long, contain 1 uppercase letter, "
    "1 lowercase letter, 1 number, and 1 special character."
)

_RULES = (
    re.compile(r"[a-z]"),
    re.compile(r"[A-Z]"),
    re.compile(r"\d"),
    re.compile(r"[^\da-zA-Z]"),
)


def is_strong_password(password: str) -> bool:
    if len(password or "") < MIN_LENGTH:
        return False
    return all(rule.search(password) for rule in _RULES)


def check_password_strength(password: str) -> None:
    if not is_strong_password(password):
        raise ValidationError(POLICY_MESSAGE)
