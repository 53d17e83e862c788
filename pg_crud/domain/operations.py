"""
Operation requests accepted by the request handler.

The set is closed: `Operation` is the union of the five variants and
`RequestHandler.handle` dispatches over all of them. Payloads stay as raw
mappings here; the handler validates them into `UserFields` / `UserPatch`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Mapping, Union

from pg_crud.domain.models import ListFilter, Pagination


@dataclass(frozen=True)
class CreateUser:
    fields: Mapping[str, Any]
    kind: ClassVar[str] = "create"


@dataclass(frozen=True)
class ReadUser:
    user_id: int
    kind: ClassVar[str] = "read"


@dataclass(frozen=True)
class UpdateUser:
    user_id: int
    fields: Mapping[str, Any]
    kind: ClassVar[str] = "update"


@dataclass(frozen=True)
class DeleteUser:
    user_id: int
    kind: ClassVar[str] = "delete"


@dataclass(frozen=True)
class ListUsers:
    filter: ListFilter = field(default_factory=ListFilter)
    page: Pagination = field(default_factory=Pagination)
    kind: ClassVar[str] = "list"


Operation = Union[CreateUser, ReadUser, UpdateUser, DeleteUser, ListUsers]

__all__ = [
    "CreateUser",
    "DeleteUser",
    "ListUsers",
    "Operation",
    "ReadUser",
    "UpdateUser",
]
