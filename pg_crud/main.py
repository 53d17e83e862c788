from __future__ import annotations

import json
import sys
from contextlib import contextmanager
from typing import Generator, Optional

import typer
import uvicorn

from pg_crud.api import create_app
from pg_crud.config import get_settings
from pg_crud.domain.operations import CreateUser, DeleteUser, Operation, ReadUser, UpdateUser
from pg_crud.handler import RequestHandler, list_operation
from pg_crud.infrastructure.pool import ConnectionManager
from pg_crud.infrastructure.schema import ensure_schema, truncate_users
from pg_crud.repository import UserRepository
from pg_crud.utils.logging import configure_logging

app = typer.Typer(help="pg-crud: CRUD service for PostgreSQL users.")


def _configure() -> None:
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)


@contextmanager
def _handler() -> Generator[RequestHandler, None, None]:
    manager = ConnectionManager.from_settings(get_settings())
    manager.open()
    try:
        yield RequestHandler(UserRepository(manager))
    finally:
        manager.close()


def _run(operation: Operation) -> None:
    _configure()
    with _handler() as handler:
        response = handler.handle(operation)
    typer.echo(json.dumps(response.body, indent=2))
    if not response.ok:
        raise typer.Exit(code=1)


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    typer.echo(
        f"DB={settings.masked_dsn()} | "
        f"pool=({settings.pool_min_size},{settings.pool_max_size}) "
        f"timeout={settings.pool_timeout_seconds}s | "
        f"server={settings.server_host}:{settings.server_port} env={settings.app_env}"
    )


@app.command("init-db")
def init_db(
    reset: bool = typer.Option(False, "--reset", help="Truncate users and restart ids at 1."),
) -> None:
    """
    Create the users table (idempotent).
    """
    _configure()
    manager = ConnectionManager.from_settings(get_settings())
    with manager:
        ensure_schema(manager)
        if reset:
            truncate_users(manager)
    typer.echo("Schema ready.")


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (default from settings)."),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Bind port (default from settings)."),
) -> None:
    """
    Run the HTTP API.
    """
    settings = get_settings()
    _configure()
    bind_host = settings.server_host if host is None else host
    bind_port = settings.server_port if port is None else port
    typer.echo(f"Server starting at {bind_host}:{bind_port}")
    uvicorn.run(create_app(settings=settings), host=bind_host, port=bind_port, log_config=None)


@app.command()
def create(
    name: str = typer.Option(..., "--name", "-n", help="User name."),
    email: Optional[str] = typer.Option(None, "--email", "-e", help="User e-mail."),
) -> None:
    """
    Create a user and print its id.
    """
    fields = {"name": name}
    if email is not None:
        fields["email"] = email
    _run(CreateUser(fields=fields))


@app.command()
def get(user_id: int = typer.Argument(..., help="User id.")) -> None:
    """
    Print one user.
    """
    _run(ReadUser(user_id=user_id))


@app.command()
def update(
    user_id: int = typer.Argument(..., help="User id."),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="New name."),
    email: Optional[str] = typer.Option(None, "--email", "-e", help="New e-mail."),
) -> None:
    """
    Change the given fields of a user.
    """
    fields = {}
    if name is not None:
        fields["name"] = name
    if email is not None:
        fields["email"] = email
    _run(UpdateUser(user_id=user_id, fields=fields))


@app.command()
def delete(user_id: int = typer.Argument(..., help="User id.")) -> None:
    """
    Delete a user (succeeds even if it does not exist).
    """
    _run(DeleteUser(user_id=user_id))


@app.command("list")
def list_users(
    name_contains: Optional[str] = typer.Option(None, "--name-contains", help="Substring filter."),
    after_id: Optional[int] = typer.Option(None, "--after-id", help="Start after this id."),
    limit: Optional[int] = typer.Option(None, "--limit", "-l", help="Maximum users to print."),
    desc: bool = typer.Option(False, "--desc", help="Newest ids first."),
) -> None:
    """
    List users ordered by id.
    """
    _run(list_operation(name_contains=name_contains, after_id=after_id, limit=limit, descending=desc))


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
