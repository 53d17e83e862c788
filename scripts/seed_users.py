"""
Synthetic user generation and loading for pg-crud.

Implements deterministic pseudo-random user generation, CSV emission, and
Postgres COPY loading for fast bulk seeding of development databases.
"""

from __future__ import annotations

import csv
import random
import sys
import tempfile
import time
from pathlib import Path

import psycopg
import typer

from pg_crud.config import get_settings

app = typer.Typer(help="Generate synthetic users and load them into Postgres (CSV + COPY).")

_FIRST_NAMES = ["ana", "bruno", "carla", "diego", "elena", "felix", "gita", "hugo"]
_DOMAINS = ["example.com", "example.org", "example.net"]


def _build_dsn(dsn_override: str | None) -> str:
    if dsn_override:
        return dsn_override
    return get_settings().dsn


def _generate_users_csv(csv_path: Path, rows: int, batch_size: int, seed: int) -> None:
    rng = random.Random(seed)

    with csv_path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(["name", "email"])

        buffer: list[list[str]] = []
        for i in range(rows):
            first = rng.choice(_FIRST_NAMES)
            name = f"{first.title()} {rng.randint(1, 9_999):04d}"
            # Row index keeps e-mails unique under the users_email_key index.
            email = f"{first}.{seed}.{i}@{rng.choice(_DOMAINS)}"
            buffer.append([name, email])
            if len(buffer) >= batch_size:
                writer.writerows(buffer)
                buffer.clear()
        if buffer:
            writer.writerows(buffer)


def _copy_into_db(dsn: str, csv_path: Path) -> int:
    with psycopg.connect(dsn) as conn:
        with conn.cursor() as cur:
            with cur.copy("COPY users (name, email) FROM STDIN WITH (FORMAT csv, HEADER TRUE)") as copy:
                with csv_path.open("r", encoding="utf-8") as f:
                    for line in f:
                        copy.write(line)
            conn.commit()
    with csv_path.open("r", newline="", encoding="utf-8") as f:
        return max(sum(1 for _ in csv.reader(f)) - 1, 0)


@app.command()
def main(
    rows: int = typer.Option(
        1_000,
        "--rows",
        "-r",
        help="Number of users to generate.",
    ),
    batch_size: int = typer.Option(
        500,
        "--batch-size",
        "-b",
        help="Batch size for CSV buffering during generation.",
    ),
    seed: int = typer.Option(
        42,
        "--seed",
        help="Deterministic RNG seed.",
    ),
    output: Path | None = typer.Option(
        None,
        "--output",
        "-o",
        help="Optional CSV output path (if omitted, a temp file will be used).",
    ),
    dsn: str | None = typer.Option(
        None,
        "--dsn",
        help="Optional DSN override for Postgres.",
    ),
    no_load: bool = typer.Option(
        False,
        "--no-load",
        help="Only generate CSV; skip loading into Postgres.",
    ),
) -> None:
    """
    Generate synthetic users and optionally load them into Postgres using COPY.
    """
    start = time.perf_counter()
    if output:
        csv_path = output
        csv_path.parent.mkdir(parents=True, exist_ok=True)
    else:
        tmpdir = Path(tempfile.mkdtemp(prefix="pg_crud_seed_"))
        csv_path = tmpdir / "users.csv"

    typer.echo(f"Generating {rows:,} users -> {csv_path} (batch={batch_size}, seed={seed})")
    _generate_users_csv(csv_path, rows=rows, batch_size=batch_size, seed=seed)
    typer.echo(f"CSV generation completed in {time.perf_counter() - start:.2f}s")

    if no_load:
        typer.echo("Skipping load (no-load flag set).")
        return

    load_start = time.perf_counter()
    typer.echo("Loading CSV into Postgres via COPY...")
    loaded = _copy_into_db(_build_dsn(dsn), csv_path)
    typer.echo(f"Loaded {loaded:,} users in {time.perf_counter() - load_start:.2f}s.")


if __name__ == "__main__":
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)
