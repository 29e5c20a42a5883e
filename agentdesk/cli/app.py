"""
Main CLI application using Typer.
"""

import asyncio
import json
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Annotated, Union

import pendulum
import typer
from pendulum import Date
from rich.console import Console
from rich.table import Table
from rich.text import Text

from ..config import AppConfig, get_default_config_path
from ..domain.calendar_grid import HOUR_HEIGHT_PX, HOURS_PER_DAY, GridPlacement, WeekGrid
from ..domain.exceptions import AgentDeskError
from ..domain.models import AgentSession, Property, ViewMode
from ..adapters.listing_source import ListingSourceClient
from ..adapters.memory_store import DEFAULT_DATA_FILE, MemoryStore
from ..adapters.rest_store import RestStore
from ..logging_config import configure_logging
from ..services.alerts import LEVEL_INFO, LEVEL_REDIRECT, Alert, AlertBoundary
from ..services.chat import ChatInbox
from ..services.listings import ListingService
from ..services.scheduling import SchedulingEngine

app = typer.Typer(
    name="agentdesk",
    help="Manage property availability, booked visits and client chats",
    add_completion=False
)

console = Console()

ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Path to config file. Defaults to ./config.yaml"),
]
MockOption = Annotated[
    bool,
    typer.Option("--mock", help="Use seeded in-memory data instead of the hosted backend."),
]


@dataclass
class AppContext:
    config: AppConfig
    store: Union[MemoryStore, RestStore]
    session: AgentSession

    def engine(self) -> SchedulingEngine:
        return SchedulingEngine(
            self.store,
            self.session,
            timezone=self.config.timezone,
            palette=self.config.palette,
            display_shift_hours=self.config.scheduling.display_shift_hours,
            revalidate_on_update=self.config.scheduling.revalidate_on_update,
        )

    def listings(self) -> ListingService:
        return ListingService(self.store, self.session, palette=self.config.palette)

    def inbox(self) -> ChatInbox:
        return ChatInbox(self.store, self.session)


class FileListingSource:
    """Listing source reading a saved API response from disk."""

    def __init__(self, path: Path):
        self.path = path

    async def fetch_listing(self, source_id: str) -> Dict[str, Any]:
        with open(self.path, "r", encoding="utf-8") as f:
            return json.load(f)


def _notify(alert: Alert) -> None:
    if alert.level == LEVEL_REDIRECT:
        console.print(f"[yellow]Not signed in. Please log in at {alert.message}.[/yellow]")
    elif alert.level == LEVEL_INFO:
        console.print(f"[yellow]{alert.message}[/yellow]")
    else:
        console.print(f"[bold red]Error:[/bold red] {alert.message}")


def _run(action: str, operation):
    """Run an async operation behind the alert boundary; exit on failure."""
    result = asyncio.run(AlertBoundary(_notify).run(action, operation))
    if result is None:
        raise typer.Exit(1)
    return result


def _load_config(config_file: Optional[Path]) -> AppConfig:
    if config_file is not None:
        return AppConfig.load_from_yaml(config_file)

    default_path = get_default_config_path()
    if default_path.exists():
        return AppConfig.load_from_yaml(default_path)
    return AppConfig()


def _build_context(config_file: Optional[Path], mock: bool) -> AppContext:
    config = _load_config(config_file)
    configure_logging(config.log_level, console)

    if mock:
        store = MemoryStore.from_json(config.store.mock_data or DEFAULT_DATA_FILE)
        return AppContext(config=config, store=store, session=store.session())

    if not config.store.is_configured():
        raise ValueError("store.url and store.api_key must be set in the config file (or use --mock).")

    store = RestStore(
        base_url=config.store.url,
        api_key=config.store.api_key,
        access_token=config.store.access_token or None,
        timeout=config.store.timeout_seconds,
    )
    session = asyncio.run(store.fetch_session())
    return AppContext(config=config, store=store, session=session)


def _parse_day(value: str, tz: str) -> Date:
    try:
        return pendulum.from_format(value, "YYYY-MM-DD", tz=tz).date()
    except ValueError as e:
        console.print(f"[red]Invalid date '{value}' (expected YYYY-MM-DD): {e}[/red]")
        raise typer.Exit(1)


def _parse_datetime(value: str, tz: str):
    try:
        return pendulum.from_format(value, "YYYY-MM-DD HH:mm", tz=tz)
    except ValueError as e:
        console.print(f"[red]Invalid timestamp '{value}' (expected 'YYYY-MM-DD HH:mm'): {e}[/red]")
        raise typer.Exit(1)


def _fail(error: Exception) -> None:
    console.print(f"[bold red]Error:[/bold red] {error}")
    raise typer.Exit(1)


def _render_week(grid: WeekGrid, placements: List[GridPlacement], properties: List[Property]) -> None:
    cells: Dict[tuple, List[Text]] = {}

    # Lowest z-index first; the cell shows the top-most slot first.
    for placement in placements:
        first_row = placement.top_px // HOUR_HEIGHT_PX
        last_row = math.ceil((placement.top_px + placement.height_px) / HOUR_HEIGHT_PX)
        style = placement.slot.style.rich_style()
        for row in range(first_row, min(last_row, HOURS_PER_DAY)):
            text = placement.slot.label if row == first_row else "│"
            if placement.slot.pending and row == first_row:
                text += " *"
            cells.setdefault((row, placement.day_index), []).insert(0, Text(text, style=style))

    table = Table(title=grid.label(), show_header=True, header_style="bold cyan", show_lines=False)
    table.add_column("", style="dim", justify="right")
    for day in grid.days:
        table.add_column(day.format("ddd D"), overflow="fold")

    for hour in range(HOURS_PER_DAY):
        row = [f"{hour:02d}:00"]
        for day_index in range(len(grid.days)):
            entries = cells.get((hour, day_index), [])
            row.append(Text("\n").join(entries) if entries else "")
        table.add_row(*row)

    console.print()
    console.print(table)

    legend = Text("  ")
    for prop in properties:
        legend.append(f"■ {prop.title}  ", style=prop.color)
    console.print(legend)
    console.print()


@app.command()
def properties(
    config_file: ConfigOption = None,
    mock: MockOption = False,
):
    """
    List the signed-in agent's properties and their calendar colours.
    """
    try:
        ctx = _build_context(config_file, mock)
    except (FileNotFoundError, ValueError) as e:
        _fail(e)

    props = _run("load your properties", ctx.listings().load_properties())

    if not props:
        console.print("[yellow]No properties found. Import a listing first.[/yellow]")
        return

    table = Table(title="Properties", show_header=True, header_style="bold cyan")
    table.add_column("#", style="dim")
    table.add_column("ID", style="dim")
    table.add_column("Title", style="bold")
    table.add_column("Colour")

    for index, prop in enumerate(props, 1):
        table.add_row(str(index), prop.id, prop.title, Text(f"■ {prop.color}", style=prop.color))

    console.print()
    console.print(table)
    console.print()


@app.command()
def week(
    config_file: ConfigOption = None,
    mock: MockOption = False,
    date: Annotated[Optional[str], typer.Option("--date", "-d", help="Any day of the week to show (YYYY-MM-DD)")] = None,
    view: Annotated[Optional[ViewMode], typer.Option("--view", help="Which slots to show")] = None,
    property_ids: Annotated[Optional[List[str]], typer.Option("--property", "-p", help="Limit to these property ids")] = None,
):
    """
    Show the weekly calendar with availability and booked visits.

    Examples:

        agentdesk week --mock --date 2024-11-25

        agentdesk week --view visits -p prop-palermo
    """
    try:
        ctx = _build_context(config_file, mock)
    except (FileNotFoundError, ValueError) as e:
        _fail(e)

    tz = ctx.config.timezone
    view_mode = view or ctx.config.scheduling.default_view
    reference = _parse_day(date, tz) if date else None

    listings = ctx.listings()
    engine = ctx.engine()

    async def load_week():
        props = await listings.load_properties()
        scope = [prop for prop in props if not property_ids or prop.id in property_ids]
        slots = await engine.merge_for_display(scope, view_mode)
        return scope, slots

    scope, slots = _run("load the calendar", load_week())

    grid = WeekGrid(reference=reference, timezone=tz)
    _render_week(grid, grid.layout(slots), scope)


@app.command("add-slot")
def add_slot(
    property_id: Annotated[str, typer.Argument(help="Property id")],
    day: Annotated[str, typer.Argument(help="Day (YYYY-MM-DD)")],
    start_hour: Annotated[int, typer.Argument(help="First selected hour (0-23)")],
    end_hour: Annotated[int, typer.Argument(help="Last selected hour (0-23)")],
    config_file: ConfigOption = None,
    mock: MockOption = False,
):
    """
    Declare a property available for the selected hours.

    The hour range works like a drag on the calendar grid: selecting 10 to 11
    creates a slot from 10:00 to 12:00.
    """
    try:
        ctx = _build_context(config_file, mock)
    except (FileNotFoundError, ValueError) as e:
        _fail(e)

    tz = ctx.config.timezone
    selected_day = _parse_day(day, tz)
    grid = WeekGrid(reference=selected_day, timezone=tz)
    engine = ctx.engine()

    try:
        grid.begin_drag(selected_day, start_hour)
        selection = grid.end_drag(selected_day, end_hour)
        candidate = engine.propose_from_selection(property_id, selection)
    except ValueError as e:
        _fail(e)

    slot = _run("add schedule", engine.confirm_slot(candidate))
    console.print(f"[green]✓ Slot {slot.id} added: {slot.time_range}[/green]")


@app.command("move-slot")
def move_slot(
    slot_id: Annotated[str, typer.Argument(help="Availability slot id")],
    start: Annotated[str, typer.Argument(help="New start ('YYYY-MM-DD HH:mm')")],
    end: Annotated[str, typer.Argument(help="New end ('YYYY-MM-DD HH:mm')")],
    config_file: ConfigOption = None,
    mock: MockOption = False,
):
    """
    Move an availability slot to new times.
    """
    try:
        ctx = _build_context(config_file, mock)
    except (FileNotFoundError, ValueError) as e:
        _fail(e)

    tz = ctx.config.timezone
    new_start = _parse_datetime(start, tz)
    new_end = _parse_datetime(end, tz)
    if new_start >= new_end:
        _fail(ValueError("The new start must be before the new end."))

    listings = ctx.listings()
    engine = ctx.engine()

    async def move():
        await engine.refresh(await listings.load_properties())
        slot = engine.board.get(slot_id)
        if slot is None:
            raise AgentDeskError(f"No availability slot {slot_id} on your properties.")
        return await engine.update_slot(slot, new_start, new_end)

    slot = _run("update schedule", move())
    console.print(f"[green]✓ Slot {slot.id} moved to {slot.time_range}[/green]")


@app.command("remove-slot")
def remove_slot(
    slot_id: Annotated[str, typer.Argument(help="Availability slot id")],
    config_file: ConfigOption = None,
    mock: MockOption = False,
):
    """
    Delete an availability slot.
    """
    try:
        ctx = _build_context(config_file, mock)
    except (FileNotFoundError, ValueError) as e:
        _fail(e)

    listings = ctx.listings()
    engine = ctx.engine()

    async def remove():
        await engine.refresh(await listings.load_properties())
        slot = engine.board.get(slot_id)
        if slot is None:
            raise AgentDeskError(f"No availability slot {slot_id} on your properties.")
        await engine.delete_slot(slot)
        return slot

    slot = _run("delete schedule", remove())
    console.print(f"[green]✓ Slot {slot.id} deleted.[/green]")


@app.command()
def inbox(
    config_file: ConfigOption = None,
    mock: MockOption = False,
):
    """
    List active conversations, most recent first.
    """
    try:
        ctx = _build_context(config_file, mock)
    except (FileNotFoundError, ValueError) as e:
        _fail(e)

    sessions = _run("load conversations", ctx.inbox().load_sessions())

    if not sessions:
        console.print("[yellow]No active conversations.[/yellow]")
        return

    table = Table(title="Conversations", show_header=True, header_style="bold cyan")
    table.add_column("Session", style="dim")
    table.add_column("Client", style="bold yellow")
    table.add_column("Last message")
    table.add_column("When", style="dim")

    for chat_session in sessions:
        latest = chat_session.latest_message
        client = chat_session.client.display_name() if chat_session.client else chat_session.client_id
        table.add_row(
            chat_session.id,
            client,
            latest.content if latest else "",
            pendulum.parse(chat_session.last_message_at).diff_for_humans(),
        )

    console.print()
    console.print(table)
    console.print()


@app.command()
def messages(
    session_id: Annotated[str, typer.Argument(help="Conversation session id")],
    config_file: ConfigOption = None,
    mock: MockOption = False,
):
    """
    Show the messages of one conversation.
    """
    try:
        ctx = _build_context(config_file, mock)
    except (FileNotFoundError, ValueError) as e:
        _fail(e)

    history = _run("load messages", ctx.inbox().load_messages(session_id))

    console.print()
    for message in history:
        when = pendulum.parse(message.created_at).in_timezone(ctx.config.timezone)
        if message.is_outgoing():
            console.print(f"[dim]{when.format('DD.MM HH:mm')}[/dim] [bold blue]→[/bold blue] {message.content}")
        else:
            console.print(f"[dim]{when.format('DD.MM HH:mm')}[/dim] [bold]←[/bold] {message.content}")
    console.print()


@app.command()
def send(
    session_id: Annotated[str, typer.Argument(help="Conversation session id")],
    text: Annotated[str, typer.Argument(help="Message text")],
    config_file: ConfigOption = None,
    mock: MockOption = False,
):
    """
    Send a message to the client of a conversation.
    """
    try:
        ctx = _build_context(config_file, mock)
    except (FileNotFoundError, ValueError) as e:
        _fail(e)

    chat = ctx.inbox()

    async def deliver():
        sessions = await chat.load_sessions()
        target = next((s for s in sessions if s.id == session_id), None)
        if target is None:
            raise AgentDeskError(f"No active conversation {session_id}.")
        message = await chat.send(target, text)
        if message is None:
            raise AgentDeskError("Message is empty.")
        return message

    message = _run("send message", deliver())
    console.print(f"[green]✓ Message {message.id} sent.[/green]")


@app.command("import-listing")
def import_listing(
    url: Annotated[str, typer.Argument(help="Public listing URL ending in --<id>")],
    payload: Annotated[Optional[Path], typer.Option("--payload", help="Read the listing document from this JSON file instead of the API")] = None,
    config_file: ConfigOption = None,
    mock: MockOption = False,
):
    """
    Import a listing from the external listings site.
    """
    try:
        ctx = _build_context(config_file, mock)
    except (FileNotFoundError, ValueError) as e:
        _fail(e)

    if payload is not None and not payload.exists():
        _fail(FileNotFoundError(f"Payload file not found: {payload}"))

    source = FileListingSource(payload) if payload else ListingSourceClient(timeout=ctx.config.store.timeout_seconds)
    posting = _run("import the listing", ctx.listings().import_listing(url, source))
    console.print(f"[green]✓ Imported '{posting.title}' as {posting.id}[/green]")


@app.command()
def version():
    """
    Show version information.
    """
    from .. import __version__
    console.print(f"\n[bold cyan]agentdesk[/bold cyan] version [bold]{__version__}[/bold]\n")


if __name__ == "__main__":
    app()
