"""
Domain models for pg-crud.

`User` mirrors a row of the `users` table created by
`pg_crud.infrastructure.schema`. `UserFields` and `UserPatch` are the payloads
accepted by create and update; both reject unknown keys, which keeps the
identifier and timestamps out of client control.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

MAX_PAGE_SIZE = 1000
DEFAULT_PAGE_SIZE = 100


def reject_nul(value: Optional[str]) -> Optional[str]:
    """PostgreSQL text columns cannot store NUL bytes."""
    if value is not None and "\x00" in value:
        raise ValueError("must not contain NUL (0x00) characters")
    return value


class User(BaseModel):
    """
    Representation of a single row in the `users` table.
    """

    id: int = Field(..., description="Primary key (SERIAL).")
    name: str = Field(..., description="Display name.")
    email: Optional[str] = Field(None, description="Unique e-mail address, if any.")
    created_at: datetime = Field(..., description="Row creation timestamp.")
    updated_at: datetime = Field(..., description="Last update timestamp.")

    model_config = ConfigDict(frozen=True, populate_by_name=True)


class UserFields(BaseModel):
    """Payload for creating a user."""

    name: str
    email: Optional[str] = None

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    @field_validator("name", "email")
    @classmethod
    def check_no_nul(cls, value: Optional[str]) -> Optional[str]:
        return reject_nul(value)


class UserPatch(BaseModel):
    """
    Partial update payload.

    Only fields the caller explicitly provided are written; an explicit
    `email: null` clears the address.
    """

    name: Optional[str] = None
    email: Optional[str] = None

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    @field_validator("name", "email")
    @classmethod
    def check_no_nul(cls, value: Optional[str]) -> Optional[str]:
        return reject_nul(value)

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


@dataclass(frozen=True)
class ListFilter:
    """Criteria for listing users; unset criteria match everything."""

    name: Optional[str] = None
    name_contains: Optional[str] = None
    email: Optional[str] = None


@dataclass(frozen=True)
class Pagination:
    """
    Keyset pagination window.

    `after_id` is exclusive; `limit` caps the total number of rows produced
    (None means all matches); `page_size` is rows per database round-trip.
    """

    after_id: Optional[int] = None
    limit: Optional[int] = None
    page_size: int = DEFAULT_PAGE_SIZE
    descending: bool = False


@dataclass(frozen=True)
class Page:
    """A materialized slice of a listing plus the cursor for the next slice."""

    items: list[User] = field(default_factory=list)
    next_after_id: Optional[int] = None


__all__ = [
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    "ListFilter",
    "Page",
    "Pagination",
    "User",
    "UserFields",
    "UserPatch",
    "reject_nul",
]
