"""Command line interface for the packaged service."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, NoReturn, Optional

import typer
import uvicorn

from . import schemas
from .config import Settings, get_settings
from .crud import DuplicateUsernameError, create_user, get_user_by_username, list_users
from .database import SessionLocal, get_engine, init_database
from .dependencies import build_store
from .errors import InventoryError
from .import_templates import FORMATS, render_template
from .importer import DuplicateResolution, ImportPipeline, ImportResult
from .ledger import StockLedger
from .log import setup_logging
from .parsing import parse_file
from .reports import build_report, render_report_csv
from .store import ProductStore

app = typer.Typer(help="Manage and run the Inventory Desk service.")


def _print_header(title: str) -> None:
    typer.secho(title, bold=True, fg=typer.colors.CYAN)


def _fail(message: str) -> NoReturn:
    typer.secho(message, fg=typer.colors.RED)
    raise typer.Exit(code=1)


def _resolve_settings() -> Settings:
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_dir)
    init_database()
    return settings


@contextmanager
def _open_store() -> Iterator[ProductStore]:
    """Yield the configured product store, closing any SQL session afterwards."""

    settings = _resolve_settings()
    if settings.backend != "sql":
        yield build_store(settings)
        return
    get_engine()
    with SessionLocal() as session:
        yield build_store(settings, session)


def _write_or_echo(content: str, output: Optional[Path]) -> None:
    if output is None:
        typer.echo(content, nl=False)
        return
    output = output.expanduser()
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(content, encoding="utf-8")
    typer.secho(f"Saved to {output}", fg=typer.colors.GREEN)


@app.command()
def run(
    host: Optional[str] = typer.Option(None, help="Hostname to bind"),
    port: Optional[int] = typer.Option(None, help="Port to expose"),
    reload: Optional[bool] = typer.Option(None, help="Enable auto-reload"),
    log_level: Optional[str] = typer.Option(None, help="Uvicorn log level"),
) -> None:
    """Start the FastAPI service using Uvicorn."""

    settings = _resolve_settings()

    uvicorn.run(
        "inventory_desk.app:create_app",
        host=host or settings.host,
        port=port or settings.port,
        reload=settings.reload if reload is None else reload,
        log_level=log_level or settings.log_level,
        factory=True,
    )


@app.command()
def init_db() -> None:
    """Create the SQLite database and tables."""

    settings = _resolve_settings()
    typer.echo(f"Database initialised at {settings.database_path}")
    typer.echo(f"Log directory ready at {settings.log_dir}")


@app.command("create-user")
def create_user_cmd(
    username: str = typer.Argument(..., help="Unique login name"),
    password: Optional[str] = typer.Option(
        None,
        "--password",
        prompt=True,
        hide_input=True,
        confirmation_prompt=True,
        help="Password for the new user",
    ),
    full_name: Optional[str] = typer.Option(None, help="Display name"),
) -> None:
    """Create a user who can sign in to the API."""

    _resolve_settings()
    with SessionLocal() as session:
        if get_user_by_username(session, username):
            _fail("User already exists")
        if password is None:
            _fail("Password is required")
        try:
            user = create_user(
                session,
                schemas.UserCreate(username=username, password=password, full_name=full_name, is_active=True),
            )
        except DuplicateUsernameError as exc:  # pragma: no cover - handled above
            typer.secho(str(exc), fg=typer.colors.RED)
            raise typer.Exit(code=1) from exc
        typer.secho(f"Created user {user.username} (id={user.id})", fg=typer.colors.GREEN)


@app.command("list-users")
def list_users_cmd() -> None:
    """Display users stored in the database."""

    _resolve_settings()
    with SessionLocal() as session:
        users = list_users(session)
        if not users:
            typer.echo("No users found.")
            return
        _print_header("Existing users")
        for user in users:
            typer.echo(f"- #{user.id} {user.username} | active={user.is_active}")


@app.command()
def show_paths() -> None:
    """Print out important filesystem paths."""

    settings = _resolve_settings()
    typer.echo(f"Data directory: {settings.data_root}")
    typer.echo(f"Database: {settings.database_path}")
    typer.echo(f"Log directory: {settings.log_dir}")
    typer.echo(f"Backend: {settings.backend}")


def _ask_resolution(duplicates: list[schemas.DuplicateRecord]) -> DuplicateResolution:
    typer.secho(f"{len(duplicates)} row(s) use SKUs that already exist:", fg=typer.colors.YELLOW)
    for item in duplicates:
        typer.echo(f"- row {item.row_number}: {item.sku} '{item.incoming_name}' (existing '{item.existing_name}')")
    choices = ", ".join(option.value for option in DuplicateResolution)
    while True:
        answer = typer.prompt(f"How should duplicates be handled? [{choices}]", default="cancel")
        try:
            return DuplicateResolution(answer.strip().lower())
        except ValueError:
            typer.secho(f"Please answer one of: {choices}", fg=typer.colors.YELLOW)


def _run_cancellable(
    pipeline: ImportPipeline,
    rows: list[dict[str, str]],
    duplicates: list[schemas.DuplicateRecord],
    resolution: Optional[DuplicateResolution],
) -> ImportResult:
    """Apply rows on a worker thread so Ctrl+C stops the import between rows."""

    cancel = threading.Event()
    outcome: dict[str, object] = {}

    def work() -> None:
        try:
            outcome["result"] = pipeline.apply(rows, duplicates, resolution, cancel_event=cancel)
        except BaseException as exc:  # re-raised on the calling thread
            outcome["error"] = exc

    worker = threading.Thread(target=work, name="inventory-import", daemon=True)
    worker.start()
    try:
        while worker.is_alive():
            worker.join(0.2)
    except KeyboardInterrupt:
        typer.secho("\nCancelling after the current row...", fg=typer.colors.YELLOW)
        cancel.set()
        worker.join()

    if "error" in outcome:
        raise outcome["error"]  # type: ignore[misc]
    return outcome["result"]  # type: ignore[return-value]


def _print_result(result: ImportResult) -> None:
    colour = typer.colors.GREEN if not result.failed and not result.cancelled else typer.colors.YELLOW
    status = "cancelled" if result.cancelled else "complete"
    typer.secho(f"Import {status}", bold=True, fg=colour)
    typer.echo(f"Successful: {result.successful}")
    typer.echo(f"Failed: {result.failed}")
    typer.echo(f"Skipped: {result.skipped}")
    if result.errors:
        _print_header("Errors")
        for message in result.display_errors():
            typer.echo(f"- {message}")


@app.command("import-file")
def import_file(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True, help="CSV or TXT file to import"),
    on_duplicate: Optional[DuplicateResolution] = typer.Option(
        None, "--on-duplicate", help="What to do with rows whose SKU already exists"
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show a preview and duplicates without writing"),
) -> None:
    """Import products from a CSV or tab separated TXT file."""

    try:
        rows = parse_file(path.name, path.read_bytes())
    except InventoryError as exc:
        _fail(str(exc))
    if not rows:
        _fail(f"{path.name} contains no data rows")

    settings = get_settings()
    with _open_store() as store:

        def progress(position: int, total: int) -> None:
            typer.echo(f"\rImporting {position}/{total}", nl=position == total)

        pipeline = ImportPipeline(
            store, row_delay=settings.import_row_delay, retries=settings.import_retries, progress=progress
        )
        try:
            duplicates = pipeline.find_duplicates(rows)
        except InventoryError as exc:
            _fail(f"Could not check for duplicates: {exc}")

        _print_header(f"{path.name}: {len(rows)} row(s)")
        for row in pipeline.preview(rows):
            typer.echo(f"- {row.get('sku', '')} | {row.get('name', '')} | qty {row.get('quantity', '')}")
        if dry_run:
            typer.echo(f"Duplicates: {len(duplicates)}")
            for item in duplicates:
                typer.echo(f"- row {item.row_number}: {item.sku} (existing #{item.existing_id})")
            return

        resolution = on_duplicate
        if duplicates and resolution is None:
            resolution = _ask_resolution(duplicates)

        result = _run_cancellable(pipeline, rows, duplicates, resolution)
    _print_result(result)
    if result.failed:
        raise typer.Exit(code=1)


@app.command()
def restock(
    product_id: str = typer.Argument(..., help="Product id"),
    quantity: int = typer.Argument(..., help="Units received"),
) -> None:
    """Receive stock for a product."""

    with _open_store() as store:
        try:
            result = StockLedger(store).restock(product_id, quantity)
        except InventoryError as exc:
            _fail(str(exc))
    typer.secho(f"Restocked product {product_id}; quantity is now {result.new_quantity}", fg=typer.colors.GREEN)


@app.command()
def move(
    product_id: str = typer.Argument(..., help="Product id"),
    movement_type: schemas.MovementType = typer.Argument(..., case_sensitive=False, help="IN, OUT or ADJUSTMENT"),
    quantity: int = typer.Argument(..., help="Positive number of units"),
    reason: str = typer.Option("", help="Why the stock changed"),
    reference: str = typer.Option("", help="Order, invoice or count reference"),
    decrease: bool = typer.Option(False, "--decrease", help="Record an ADJUSTMENT as a decrease"),
) -> None:
    """Record a stock movement."""

    with _open_store() as store:
        try:
            result = StockLedger(store).record_movement(
                product_id, movement_type, quantity, reason, reference, decrease=decrease
            )
        except InventoryError as exc:
            _fail(str(exc))
    typer.secho(
        f"Recorded {movement_type.value} {result.movement.quantity_change:+d}; quantity is now {result.new_quantity}",
        fg=typer.colors.GREEN,
    )


@app.command()
def movements(
    product: Optional[str] = typer.Option(None, "--product", help="Only show movements for this product id"),
    limit: int = typer.Option(20, "--limit", help="Maximum number of movements"),
) -> None:
    """Show the most recent stock movements."""

    with _open_store() as store:
        try:
            entries = StockLedger(store).list_movements(product, limit)
        except InventoryError as exc:
            _fail(str(exc))
    if not entries:
        typer.echo("No stock movements recorded.")
        return
    _print_header("Stock movements")
    for entry in entries:
        typer.echo(
            f"- {entry.created_at:%Y-%m-%d %H:%M} {entry.sku or entry.product_id} "
            f"{entry.movement_type.value} {entry.quantity_change:+d} {entry.reason}".rstrip()
        )


@app.command()
def report(
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the CSV report to this file"),
) -> None:
    """Build the inventory report as CSV."""

    settings = get_settings()
    with _open_store() as store:
        try:
            products = store.list()
        except InventoryError as exc:
            _fail(str(exc))
    _write_or_echo(render_report_csv(build_report(products), settings.currency_symbol), output)


@app.command()
def template(
    fmt: str = typer.Option("csv", "--format", help=f"One of: {', '.join(FORMATS)}"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the template to this file"),
) -> None:
    """Print an import template with example rows."""

    try:
        content = render_template(fmt)
    except InventoryError as exc:
        _fail(str(exc))
    _write_or_echo(content, output)


def main() -> None:
    """Entry-point for console scripts."""

    app()


if __name__ == "__main__":  # pragma: no cover
    main()
