"""
Domain package for pg-crud.

Exports the user models and the closed set of operation requests.
Keep this package focused on data definitions and validation concerns.
"""

from pg_crud.domain.models import (
    ListFilter,
    Page,
    Pagination,
    User,
    UserFields,
    UserPatch,
)
from pg_crud.domain.operations import (
    CreateUser,
    DeleteUser,
    ListUsers,
    Operation,
    ReadUser,
    UpdateUser,
)

__all__ = [
    "CreateUser",
    "DeleteUser",
    "ListFilter",
    "ListUsers",
    "Operation",
    "Page",
    "Pagination",
    "ReadUser",
    "UpdateUser",
    "User",
    "UserFields",
    "UserPatch",
]
