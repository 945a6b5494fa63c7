"""Family member records and birthday arithmetic."""

from __future__ import annotations

import re
from datetime import date

from pydantic import BaseModel, Field, field_validator

from dadgpt.utils import generate_id

BIRTHDAY_RE = re.compile(r"^(?:(\d{4})-)?(\d{2})-(\d{2})$")


def check_birthday(value: str | None) -> str | None:
    """Validate MM-DD or YYYY-MM-DD, returning the value unchanged."""
    if value is None:
        return None
    match = BIRTHDAY_RE.match(value)
    if not match:
        raise ValueError("birthday must be MM-DD or YYYY-MM-DD")
    # 2000 is a leap year, so 02-29 passes
    date(int(match.group(1) or 2000), int(match.group(2)), int(match.group(3)))
    return value


class FamilyMember(BaseModel):
    id: str = Field(default_factory=generate_id)
    name: str
    relationship: str
    birthday: str | None = None
    notes: str | None = None

    @field_validator("birthday")
    @classmethod
    def _validate_birthday(cls, value: str | None) -> str | None:
        return check_birthday(value)

    @property
    def birth_year(self) -> int | None:
        match = BIRTHDAY_RE.match(self.birthday or "")
        return int(match.group(1)) if match and match.group(1) else None


def next_birthday(birthday: str, today: date) -> date | None:
    """Next occurrence of birthday on or after today."""
    match = BIRTHDAY_RE.match(birthday)
    if not match:
        return None
    month, day = int(match.group(2)), int(match.group(3))

    def occurrence(year: int) -> date:
        try:
            return date(year, month, day)
        except ValueError:
            # Feb 29 outside a leap year
            return date(year, month, day - 1)

    upcoming = occurrence(today.year)
    if upcoming < today:
        upcoming = occurrence(today.year + 1)
    return upcoming


def days_until_birthday(birthday: str, today: date) -> int | None:
    """Days from today until the next birthday (0 = today)."""
    upcoming = next_birthday(birthday, today)
    return (upcoming - today).days if upcoming else None
