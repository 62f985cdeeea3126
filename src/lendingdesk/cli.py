"""Command-line interface for lendingdesk.

Built with Typer for commands and Rich for output.
"""

import json
import logging
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .config import get_config
from .db import get_db
from .db.repositories import ItemRepository, PatronRepository
from .db.schemas import (
    ItemCreate,
    ItemResponse,
    LoanResponse,
    PatronCreate,
    PatronResponse,
    PatronStatus,
    PatronUpdate,
)
from .errors import LendingError

# Create the main app
app = typer.Typer(
    name="lendingdesk",
    help="Lend books to patrons from a shared inventory.",
    no_args_is_help=True,
)

# Create sub-apps for command groups
patron_app = typer.Typer(help="Manage patrons.")
app.add_typer(patron_app, name="patron")

item_app = typer.Typer(help="Manage items and their copies.")
app.add_typer(item_app, name="item")

# Rich console for pretty output
console = Console()


# ============================================================================
# Helper Functions
# ============================================================================


def print_error(message: str) -> None:
    """Print an error message."""
    console.print(f"[bold red]Error:[/bold red] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[bold green]Success:[/bold green] {message}")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[bold yellow]Warning:[/bold yellow] {message}")


def configure_logging(level: str) -> None:
    """Send log records through Rich at the given level."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _service():
    from .lending import LendingService

    return LendingService(get_db(), get_config())


def _resolve_patron_id(ref: str) -> str:
    """Accept a patron ID or username."""
    patrons = PatronRepository(get_db())
    patron = patrons.find_by_id(ref) or patrons.find_by_username(ref)
    if patron is None:
        print_error(f"No patron found: {ref}")
        raise typer.Exit(1)
    return patron.id


def print_json(records: list, schema) -> None:
    """Print ORM records as a JSON array through their response schema."""
    data = [schema.model_validate(record).model_dump(mode="json") for record in records]
    typer.echo(json.dumps(data, indent=2))


def format_loan_table(loans: list, title: str = "Loans") -> Table:
    """Create a rich table for displaying loans."""
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("Loan ID", style="dim", no_wrap=True)
    table.add_column("Item", style="cyan")
    table.add_column("Patron", style="green")
    table.add_column("Status", style="yellow")
    table.add_column("Borrowed")
    table.add_column("Due")
    table.add_column("Returned")

    for loan in loans:
        table.add_row(
            loan.id,
            loan.item_id,
            loan.patron_id,
            "[red]overdue[/red]" if loan.is_overdue else loan.status,
            loan.borrowed_at.strftime("%Y-%m-%d"),
            loan.due_at.strftime("%Y-%m-%d"),
            loan.returned_at.strftime("%Y-%m-%d") if loan.returned_at else "-",
        )

    return table


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log lending activity"),
) -> None:
    """Lend books to patrons from a shared inventory."""
    configure_logging("INFO" if verbose else get_config().log_level)


# ============================================================================
# Setup Commands
# ============================================================================


@app.command()
def init() -> None:
    """Create the database tables."""
    config = get_config()
    errors = config.validate()
    if errors:
        for error in errors:
            print_error(error)
        raise typer.Exit(1)

    db = get_db()
    db.create_tables()
    print_success(f"Database ready at {db.engine.url}")


# ============================================================================
# Patron Commands
# ============================================================================


@patron_app.command("add")
def patron_add(
    username: str = typer.Argument(..., help="Unique username"),
    name: str = typer.Option(..., "--name", "-n", help="Full name"),
    email: Optional[str] = typer.Option(None, "--email", "-e", help="Email address"),
    phone: Optional[str] = typer.Option(None, "--phone", "-p", help="Phone number"),
) -> None:
    """Register a patron."""
    patrons = PatronRepository(get_db())
    if patrons.find_by_username(username):
        print_error(f"Username already taken: {username}")
        raise typer.Exit(1)

    patron = patrons.create(
        PatronCreate(username=username, full_name=name, email=email, phone=phone)
    )
    print_success(f"Registered {patron.full_name}")
    console.print(f"  ID: {patron.id}")


@patron_app.command("list")
def patron_list(
    json_format: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """List all patrons."""
    patrons = PatronRepository(get_db()).list_all()
    if json_format:
        print_json(patrons, PatronResponse)
        return
    if not patrons:
        console.print("[dim]No patrons registered.[/dim]")
        return

    table = Table(title="Patrons", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Username", style="cyan")
    table.add_column("Name", style="green")
    table.add_column("Status", style="yellow")
    for patron in patrons:
        table.add_row(patron.id, patron.username, patron.full_name, patron.status)
    console.print(table)


@patron_app.command("status")
def patron_status(
    patron: str = typer.Argument(..., help="Patron ID or username"),
    status: PatronStatus = typer.Argument(..., help="New status"),
) -> None:
    """Change a patron's status."""
    patron_id = _resolve_patron_id(patron)
    updated = PatronRepository(get_db()).update(patron_id, PatronUpdate(status=status))
    print_success(f"{updated.username} is now {updated.status}")


# ============================================================================
# Item Commands
# ============================================================================


@item_app.command("add")
def item_add(
    title: str = typer.Argument(..., help="Title"),
    author: Optional[str] = typer.Option(None, "--author", "-a", help="Author"),
    isbn: Optional[str] = typer.Option(None, "--isbn", "-i", help="ISBN"),
    copies: int = typer.Option(1, "--copies", "-c", min=0, help="Number of copies"),
) -> None:
    """Add an item with a number of copies."""
    item = ItemRepository(get_db()).create(
        ItemCreate(title=title, author=author, isbn=isbn, total_copies=copies)
    )
    print_success(f"Added {item.title} ({item.total_copies} copies)")
    console.print(f"  ID: {item.id}")


@item_app.command("list")
def item_list(
    json_format: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """List items with their available copies."""
    items = ItemRepository(get_db()).list_all()
    if json_format:
        print_json(items, ItemResponse)
        return
    if not items:
        console.print("[dim]No items in inventory.[/dim]")
        return

    table = Table(title="Inventory", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Title", style="cyan", max_width=40)
    table.add_column("Author", style="green", max_width=25)
    table.add_column("Available", justify="right")
    table.add_column("Total", justify="right")
    for item in items:
        available = str(item.available_copies)
        if item.available_copies == 0:
            available = f"[red]{available}[/red]"
        table.add_row(item.id, item.title, item.author or "-", available, str(item.total_copies))
    console.print(table)


@item_app.command("check")
def item_check(
    item_id: str = typer.Argument(..., help="Item ID"),
) -> None:
    """Check an item's available count against its open loans."""
    try:
        report = _service().check_inventory(item_id)
    except LendingError as e:
        print_error(e.message)
        raise typer.Exit(1)

    console.print(f"[bold]{report.title}[/bold]")
    console.print(f"  Total copies:     {report.total_copies}")
    console.print(f"  Open loans:       {report.open_loans}")
    console.print(f"  Available copies: {report.available_copies}")
    if report.consistent:
        print_success("Inventory is consistent")
    else:
        print_warning(f"Expected {report.expected_available} available copies")
        raise typer.Exit(1)


# ============================================================================
# Lending Commands
# ============================================================================


@app.command()
def borrow(
    patron: str = typer.Argument(..., help="Patron ID or username"),
    item_id: str = typer.Argument(..., help="Item ID"),
    days: Optional[int] = typer.Option(None, "--days", "-d", help="Loan period in days"),
) -> None:
    """Lend a copy of an item to a patron."""
    patron_id = _resolve_patron_id(patron)
    try:
        loan = _service().borrow(patron_id, item_id, days)
    except LendingError as e:
        print_error(e.message)
        raise typer.Exit(1)

    print_success(f"Loan created: {loan.id}")
    console.print(f"  Due: {loan.due_at.strftime('%Y-%m-%d %H:%M')} UTC")


@app.command("return")
def return_cmd(
    loan_id: str = typer.Argument(..., help="Loan ID"),
) -> None:
    """Return a borrowed copy."""
    service = _service()
    try:
        service.return_loan(loan_id)
        assessment = service.assess_fine(loan_id)
    except LendingError as e:
        print_error(e.message)
        raise typer.Exit(1)

    print_success(f"Returned loan {loan_id}")
    if assessment.amount > 0:
        print_warning(
            f"{assessment.overdue_days} day(s) overdue, fine due: {assessment.amount}"
        )


@app.command()
def fine(
    loan_id: str = typer.Argument(..., help="Loan ID"),
) -> None:
    """Show the overdue fine on a loan."""
    try:
        assessment = _service().assess_fine(loan_id)
    except LendingError as e:
        print_error(e.message)
        raise typer.Exit(1)

    console.print(f"  Due:          {assessment.due_date.strftime('%Y-%m-%d %H:%M')} UTC")
    console.print(f"  Overdue days: {assessment.overdue_days}")
    console.print(f"  Daily rate:   {assessment.daily_rate}")
    console.print(f"  [bold]Fine:         {assessment.amount}[/bold]")


@app.command()
def loans(
    patron: Optional[str] = typer.Option(None, "--patron", "-p", help="Patron ID or username"),
    item_id: Optional[str] = typer.Option(None, "--item", "-i", help="Item ID"),
    open_only: bool = typer.Option(False, "--open", "-o", help="Only unreturned loans"),
    json_format: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """List loans of a patron or an item."""
    if bool(patron) == bool(item_id):
        print_error("Give exactly one of --patron or --item")
        raise typer.Exit(1)

    service = _service()
    if patron:
        results = service.loans_for_patron(_resolve_patron_id(patron), open_only=open_only)
    else:
        results = service.loans_for_item(item_id, open_only=open_only)

    if json_format:
        print_json(results, LoanResponse)
        return

    if not results:
        console.print("[dim]No loans found.[/dim]")
        return
    console.print(format_loan_table(results))


@app.command()
def version() -> None:
    """Show version information."""
    from . import __version__

    console.print(f"lendingdesk version {__version__}")


# ============================================================================
# Main Entry Point
# ============================================================================


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
