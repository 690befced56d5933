import json
import subprocess
import sys
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from .config import Settings, configure_logging
from .container import LibraryServices, build_services
from .errors import LibraryError
from .security import Principal
from .user import Role

APP_NAME = "Library CLI"

console = Console()
app = typer.Typer(help=APP_NAME)

# Commands run by the operator on the server host act with admin rights
OPERATOR = Principal(user_id=0, role=Role.ADMIN)


def _open(db_file: Optional[str]) -> LibraryServices:
    settings = Settings()
    if db_file:
        settings.database_file = db_file
    configure_logging(settings.log_level)
    return build_services(settings)


def _fail(exc: LibraryError) -> None:
    console.print(f"[bold red]Error:[/] {exc.message}")
    raise typer.Exit(code=1)


@app.command("init-db")
def cli_init_db(db_file: Optional[str] = typer.Option(None, "--db", help="SQLite database file")):
    """Create the database schema."""
    services = _open(db_file)
    try:
        print(f"Database initialized at {services.database.path}")
    finally:
        services.close()


@app.command("create-admin")
def cli_create_admin(
    name: str = typer.Argument(..., help="Display name"),
    email: str = typer.Argument(..., help="Login email"),
    password: str = typer.Argument(..., help="Initial password"),
    db_file: Optional[str] = typer.Option(None, "--db", help="SQLite database file"),
):
    """Create an admin account, or promote the account that already uses EMAIL."""
    services = _open(db_file)
    try:
        user = services.membership.bootstrap_admin(name, email, password)
        print(f"Admin ready: {user.name} <{user.email}> (id {user.id})")
    except LibraryError as exc:
        _fail(exc)
    finally:
        services.close()


@app.command("stats")
def cli_stats(
    db_file: Optional[str] = typer.Option(None, "--db", help="SQLite database file"),
    as_json: bool = typer.Option(False, "--json", help="Print JSON instead of a table"),
):
    """Show catalog and circulation counters."""
    services = _open(db_file)
    try:
        summary = services.stats.summary(OPERATOR)
    except LibraryError as exc:
        _fail(exc)
    finally:
        services.close()

    if as_json:
        print(json.dumps(summary))
        return
    table = Table(title="Library Stats", header_style="bold cyan")
    table.add_column("Metric", style="white")
    table.add_column("Value", style="magenta", justify="right")
    for key, value in summary.items():
        table.add_row(key.replace("_", " ").title(), str(value))
    console.print(table)


@app.command("overdue")
def cli_overdue(db_file: Optional[str] = typer.Option(None, "--db", help="SQLite database file")):
    """List open borrows past their due date."""
    services = _open(db_file)
    try:
        rows = services.circulation.list_overdue_borrows(OPERATOR)
    except LibraryError as exc:
        _fail(exc)
    finally:
        services.close()

    if not rows:
        print("No overdue borrows.")
        return
    table = Table(title="Overdue Borrows", show_lines=True, header_style="bold cyan")
    table.add_column("Borrow", style="magenta", no_wrap=True)
    table.add_column("Title", style="white")
    table.add_column("Member", style="white")
    table.add_column("Due", style="red")
    for row in rows:
        table.add_row(str(row["id"]), row["title"], f"{row['member_name']} <{row['member_email']}>", row["due_date"])
    console.print(table)


@app.command("serve")
def cli_serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (default: API_HOST)"),
    port: Optional[int] = typer.Option(None, "--port", help="Port (default: API_PORT)"),
    reload: bool = typer.Option(False, "--reload", help="Restart on code changes"),
):
    """Run the API server with uvicorn."""
    settings = Settings()
    command = [
        sys.executable, "-m", "uvicorn",
        "library_app.api:create_app", "--factory",
        "--host", host or settings.api_host,
        "--port", str(port or settings.api_port),
    ]
    if reload:
        command.append("--reload")
    console.print(f"[bold green]Starting API server[/] on http://{host or settings.api_host}:{port or settings.api_port}")
    try:
        subprocess.run(command, check=True)
    except FileNotFoundError:
        console.print("[bold red]Error:[/] `uvicorn` was not found. Make sure it is installed in this environment.")
        raise typer.Exit(code=1)
    except subprocess.CalledProcessError as exc:
        raise typer.Exit(code=exc.returncode)
    except KeyboardInterrupt:
        console.print("[dim]Server stopped.[/]")


def run() -> None:
    app()


if __name__ == "__main__":
    run()
