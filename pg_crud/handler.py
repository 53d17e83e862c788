"""
Request handler: validates operation requests, dispatches them to the
repository, and shapes the outcome into a transport-neutral `Response`.

This is the only component that turns errors into user-visible text. HTTP and
CLI front-ends translate `Response.status` into their own conventions.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping

from pydantic import ValidationError

from pg_crud.domain.models import (
    MAX_PAGE_SIZE,
    ListFilter,
    Page,
    Pagination,
    UserFields,
    UserPatch,
    reject_nul,
)
from pg_crud.domain.operations import (
    CreateUser,
    DeleteUser,
    ListUsers,
    Operation,
    ReadUser,
    UpdateUser,
)
from pg_crud.errors import (
    ConstraintViolation,
    CrudError,
    InvalidRequest,
    NotFound,
    PoolExhausted,
    TransportFailure,
)
from pg_crud.repository import UserRepository
from pg_crud.utils.logging import get_logger

log = get_logger(__name__)


class Status(str, Enum):
    OK = "ok"
    CREATED = "created"
    INVALID = "invalid"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class Response:
    status: Status
    body: Any

    @property
    def ok(self) -> bool:
        return self.status in (Status.OK, Status.CREATED)


def _validation_to_invalid(exc: ValidationError) -> InvalidRequest:
    first = exc.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or "body"
    return InvalidRequest(field, first.get("msg", "invalid value"))


def _require_id(user_id: Any) -> int:
    if isinstance(user_id, bool) or not isinstance(user_id, int) or user_id < 1:
        raise InvalidRequest("id", "must be a positive integer")
    return user_id


def _require_mapping(fields: Any) -> Mapping[str, Any]:
    if not isinstance(fields, Mapping):
        raise InvalidRequest("body", "must be a JSON object")
    return fields


class RequestHandler:
    """
    Adapt operation requests into repository calls.

    Parameters
    ----------
    repository : UserRepository
        Data access for users; shares its ConnectionManager with nothing else
        the handler knows about.
    """

    def __init__(self, repository: UserRepository) -> None:
        self.repository = repository

    def handle(self, operation: Operation) -> Response:
        """Run one operation and map its result or failure to a Response."""
        try:
            return self._dispatch(operation)
        except InvalidRequest as exc:
            log.info("Rejected invalid request", extra={"operation": operation.kind, "reason": str(exc)})
            return Response(Status.INVALID, {"error": "invalid", "detail": str(exc), "field": exc.field})
        except NotFound as exc:
            log.info("Record not found", extra={"operation": operation.kind, "user_id": exc.record_id})
            return Response(Status.NOT_FOUND, {"error": "not found", "detail": str(exc)})
        except ConstraintViolation as exc:
            log.warning(
                "Constraint violation",
                extra={"operation": operation.kind, "constraint": exc.constraint},
            )
            return Response(
                Status.CONFLICT,
                {"error": "conflict", "detail": str(exc), "constraint": exc.constraint},
            )
        except (PoolExhausted, TransportFailure) as exc:
            log.error(
                "Database unavailable",
                extra={"operation": operation.kind, "error_type": type(exc).__name__, "detail": str(exc)},
            )
            return Response(
                Status.UNAVAILABLE,
                {"error": "unavailable", "detail": str(exc), "retryable": exc.retryable},
            )
        except CrudError as exc:
            # Unclassified taxonomy member; still never leak a traceback.
            log.error("Unhandled CRUD error", exc_info=True, extra={"operation": operation.kind})
            return Response(Status.UNAVAILABLE, {"error": "unavailable", "detail": str(exc)})

    def _dispatch(self, operation: Operation) -> Response:
        if isinstance(operation, CreateUser):
            return self._create(operation)
        if isinstance(operation, ReadUser):
            user = self.repository.read(_require_id(operation.user_id))
            return Response(Status.OK, user.model_dump(mode="json"))
        if isinstance(operation, UpdateUser):
            return self._update(operation)
        if isinstance(operation, DeleteUser):
            user_id = _require_id(operation.user_id)
            deleted = self.repository.delete(user_id)
            return Response(Status.OK, {"id": user_id, "deleted": deleted})
        if isinstance(operation, ListUsers):
            return self._list(operation)
        raise TypeError(f"Unsupported operation: {operation!r}")

    def _create(self, operation: CreateUser) -> Response:
        fields = _require_mapping(operation.fields)
        if "name" not in fields or fields["name"] is None:
            raise InvalidRequest("name", "field required")
        try:
            payload = UserFields.model_validate(dict(fields))
        except ValidationError as exc:
            raise _validation_to_invalid(exc) from exc
        if not payload.name:
            raise InvalidRequest("name", "must not be blank")
        user_id = self.repository.create(payload)
        return Response(Status.CREATED, {"id": user_id})

    def _update(self, operation: UpdateUser) -> Response:
        user_id = _require_id(operation.user_id)
        fields = _require_mapping(operation.fields)
        if not fields:
            raise InvalidRequest("body", "at least one field is required")
        if "id" in fields:
            raise InvalidRequest("id", "identifier cannot be changed")
        try:
            patch = UserPatch.model_validate(dict(fields))
        except ValidationError as exc:
            raise _validation_to_invalid(exc) from exc
        changes = patch.changes()
        if "name" in changes and not changes["name"]:
            raise InvalidRequest("name", "must not be blank")
        user = self.repository.update(user_id, patch)
        return Response(Status.OK, user.model_dump(mode="json"))

    def _list(self, operation: ListUsers) -> Response:
        page = operation.page
        if not 1 <= page.page_size <= MAX_PAGE_SIZE:
            raise InvalidRequest("page_size", f"must be between 1 and {MAX_PAGE_SIZE}")
        if page.limit is not None and page.limit < 0:
            raise InvalidRequest("limit", "must not be negative")
        if page.after_id is not None and page.after_id < 0:
            raise InvalidRequest("after_id", "must not be negative")
        for name in ("name", "name_contains", "email"):
            try:
                reject_nul(getattr(operation.filter, name))
            except ValueError as exc:
                raise InvalidRequest(name, str(exc)) from exc
        items = list(self.repository.list(operation.filter, page))
        result = Page(items=items)
        if page.limit is not None and items and len(items) == page.limit:
            result = Page(items=items, next_after_id=items[-1].id)
        return Response(
            Status.OK,
            {
                "items": [user.model_dump(mode="json") for user in result.items],
                "next_after_id": result.next_after_id,
            },
        )

    def health(self) -> Response:
        return Response(Status.OK, {"status": "ok", "pool": self.repository.manager.describe()})


def list_operation(
    name: str | None = None,
    name_contains: str | None = None,
    email: str | None = None,
    after_id: int | None = None,
    limit: int | None = None,
    page_size: int | None = None,
    descending: bool = False,
) -> ListUsers:
    """Build a ListUsers operation from flat transport parameters."""
    page = Pagination(after_id=after_id, limit=limit, descending=descending)
    if page_size is not None:
        page = Pagination(after_id=after_id, limit=limit, page_size=page_size, descending=descending)
    return ListUsers(
        filter=ListFilter(name=name, name_contains=name_contains, email=email),
        page=page,
    )


__all__ = ["RequestHandler", "Response", "Status", "list_operation"]
