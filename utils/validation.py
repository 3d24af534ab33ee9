from __future__ import annotations

import re
import uuid
from email.utils import parseaddr

from services.errors import ValidationError

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def is_valid_email(email: str | None) -> bool:
    if not email:
        return False
    name, addr = parseaddr(email)
    return bool(addr) and addr == email.strip() and bool(_EMAIL_RE.match(addr))


def is_valid_uuid(value) -> bool:
    try:
        uuid.UUID(str(value))
    except (TypeError, ValueError):
        return False
    return True


def clean_text(value, field: str) -> str:
    """Stripped string value of a JSON field; None counts as empty."""
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError(f"'{field}' must be a string")
    return value.strip()
