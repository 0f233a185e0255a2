"""Meeting code helpers.

Codes look like ``GBK-7M2``: three characters, a dash, three characters,
drawn from an alphabet without the easily confused O/0/I/1.
"""
from __future__ import annotations

import re
import secrets
from typing import Any

_CODE_ALPHABET = 'ABCDEFGHJKLMNPQRSTUVWXYZ23456789'
_CODE_RE = re.compile(r'^[A-Z0-9]{6,7}$')


def generate_meeting_code() -> str:
    left = ''.join(secrets.choice(_CODE_ALPHABET) for _ in range(3))
    right = ''.join(secrets.choice(_CODE_ALPHABET) for _ in range(3))
    return f"{left}-{right}"


def normalize_meeting_code(value: Any) -> str:
    """Trim and upper-case a client supplied code; non-strings become ''."""
    if not isinstance(value, str):
        return ''
    return value.strip().upper()


def is_valid_meeting_code(value: Any) -> bool:
    if not value or not isinstance(value, str):
        return False
    return bool(_CODE_RE.match(value.replace('-', '', 1).upper()))
