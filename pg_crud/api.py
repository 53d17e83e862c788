"""
HTTP transport for pg-crud.

Endpoints are plain `def` functions, so FastAPI runs each request in its worker
threadpool and every request holds its own connection lease. Endpoint bodies
only build operations and translate handler responses into status codes.
"""

from __future__ import annotations

import traceback
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, Literal, Optional

from fastapi import Body, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response as StarletteResponse

from pg_crud.config import Settings, get_settings
from pg_crud.domain.models import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from pg_crud.domain.operations import CreateUser, DeleteUser, ReadUser, UpdateUser
from pg_crud.handler import RequestHandler, Response, Status, list_operation
from pg_crud.infrastructure.pool import ConnectionManager
from pg_crud.infrastructure.schema import ensure_schema
from pg_crud.repository import UserRepository
from pg_crud.utils.logging import get_logger

log = get_logger("pg_crud.api")

HTTP_STATUS: Dict[Status, int] = {
    Status.OK: 200,
    Status.CREATED: 201,
    Status.INVALID: 422,
    Status.NOT_FOUND: 404,
    Status.CONFLICT: 409,
    Status.UNAVAILABLE: 503,
}


class SafeErrorMiddleware(BaseHTTPMiddleware):
    """
    - Never return stack traces to clients
    - Log traceback server-side
    """

    async def dispatch(self, request: Request, call_next: Callable) -> StarletteResponse:
        try:
            return await call_next(request)
        except Exception as e:
            log.error(
                "Unhandled error: %s method=%s path=%s\n%s",
                str(e),
                request.method,
                request.url.path,
                traceback.format_exc(),
            )
            return JSONResponse(status_code=500, content={"error": "Internal Server Error"})


def _to_http(response: Response) -> JSONResponse:
    headers = {"Retry-After": "1"} if response.status is Status.UNAVAILABLE else None
    return JSONResponse(status_code=HTTP_STATUS[response.status], content=response.body, headers=headers)


def _handler(request: Request) -> RequestHandler:
    return request.app.state.handler


def _open_handler(settings: Settings) -> RequestHandler:
    manager = ConnectionManager.from_settings(settings)
    manager.open()
    try:
        ensure_schema(manager)
    except Exception:
        manager.close()
        raise
    return RequestHandler(UserRepository(manager))


def create_app(
    handler: Optional[RequestHandler] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Parameters
    ----------
    handler : RequestHandler, optional
        An externally owned handler. When omitted, the app opens its own pool
        and ensures the schema on start-up, and closes the pool on shutdown.
    settings : Settings, optional
        Settings used when the app owns its pool.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if handler is not None:
            yield
            return
        owned = await run_in_threadpool(_open_handler, settings or get_settings())
        app.state.handler = owned
        log.info("pg-crud API ready")
        try:
            yield
        finally:
            await run_in_threadpool(owned.repository.manager.close)

    app = FastAPI(title="pg-crud", version="0.1.0", lifespan=lifespan)
    app.add_middleware(SafeErrorMiddleware)
    if handler is not None:
        app.state.handler = handler

    @app.get("/health")
    def health(request: Request) -> JSONResponse:
        return _to_http(_handler(request).health())

    @app.post("/users")
    def create_user(request: Request, payload: Dict[str, Any] = Body(...)) -> JSONResponse:
        return _to_http(_handler(request).handle(CreateUser(fields=payload)))

    @app.get("/users")
    def list_users(
        request: Request,
        name: Optional[str] = None,
        name_contains: Optional[str] = None,
        email: Optional[str] = None,
        after_id: Optional[int] = None,
        limit: int = Query(DEFAULT_PAGE_SIZE, ge=0, le=MAX_PAGE_SIZE),
        page_size: Optional[int] = Query(None, ge=1, le=MAX_PAGE_SIZE),
        order: Literal["asc", "desc"] = "asc",
    ) -> JSONResponse:
        operation = list_operation(
            name=name,
            name_contains=name_contains,
            email=email,
            after_id=after_id,
            limit=limit,
            page_size=page_size,
            descending=order == "desc",
        )
        return _to_http(_handler(request).handle(operation))

    @app.get("/users/{user_id}")
    def read_user(request: Request, user_id: int) -> JSONResponse:
        return _to_http(_handler(request).handle(ReadUser(user_id=user_id)))

    @app.put("/users/{user_id}")
    @app.patch("/users/{user_id}")
    def update_user(request: Request, user_id: int, payload: Dict[str, Any] = Body(...)) -> JSONResponse:
        return _to_http(_handler(request).handle(UpdateUser(user_id=user_id, fields=payload)))

    @app.delete("/users/{user_id}")
    def delete_user(request: Request, user_id: int) -> JSONResponse:
        return _to_http(_handler(request).handle(DeleteUser(user_id=user_id)))

    return app


__all__ = ["HTTP_STATUS", "SafeErrorMiddleware", "create_app"]
