"""
Main CLI application using Typer.
"""

import asyncio
import logging
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from ..adapters.config_providers import ConfigCalendarSettingsProvider, ConfigShopHoursProvider
from ..adapters.memory_store import InMemoryAppointmentStore
from ..config import AppConfig, get_default_config_path
from ..domain.date_range import CalendarView
from ..domain.exceptions import SchedulingError
from ..domain.lifecycle import AppointmentPatch
from ..domain.models import Appointment, is_shop_open
from ..domain.time_model import (
    WallClockInstant,
    combine,
    format_duration,
    format_time_12h,
    now_wall_clock,
    parse_local_date,
    parse_local_time,
)
from ..services.appointment_service import AppointmentService
from ..services.calendar_session import CalendarSession
from ..services.range_cache import RangeCache

app = typer.Typer(
    name="shopcalendar",
    help="Appointment scheduling for a seamstress shop",
    add_completion=False
)

console = Console()

ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Path to config file. Defaults to ./config.yaml"),
]
NowOption = Annotated[
    Optional[str],
    typer.Option("--now", help="Treat this as the current time (YYYY-MM-DD HH:MM)"),
]

STATUS_STYLES = {
    "pending": "yellow",
    "confirmed": "green",
    "declined": "dim",
    "canceled": "dim strike",
    "no_show": "red",
}


class Context:
    """Services wired from one configuration file."""

    def __init__(self, config: AppConfig, config_path: Path):
        self.config = config
        appointments_file = config.resolve_appointments_file(config_path)
        self.store = (
            InMemoryAppointmentStore.load_from_json(appointments_file)
            if appointments_file is not None
            else InMemoryAppointmentStore()
        )
        self.cache = RangeCache(
            self.store,
            config.shop_id,
            stale_after_seconds=config.cache.stale_after_seconds,
        )
        self.service = AppointmentService(
            store=self.store,
            shop_hours_provider=ConfigShopHoursProvider(config),
            settings_provider=ConfigCalendarSettingsProvider(config),
            cache=self.cache,
            timezone=config.timezone,
        )

    def now(self, override: Optional[str]) -> WallClockInstant:
        if not override:
            return now_wall_clock(self.config.timezone)
        try:
            date_part, time_part = override.split()
        except ValueError:
            raise typer.BadParameter(f"Expected 'YYYY-MM-DD HH:MM', got {override!r}", param_hint="--now")
        return combine(parse_local_date(date_part), parse_local_time(time_part))


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=False)],
    )


def _load_context(config_file: Optional[Path]) -> Context:
    config_path = config_file or get_default_config_path()
    config = AppConfig.load_from_yaml(config_path)
    _setup_logging(config.log_level)
    return Context(config, config_path)


def _fail(exc: Exception) -> None:
    console.print(f"[bold red]Error:[/bold red] {escape(str(exc))}")
    raise typer.Exit(1)


def _appointment_table(title: str, appointments) -> Table:
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Date", no_wrap=True)
    table.add_column("Time", style="bold", no_wrap=True)
    table.add_column("Type", no_wrap=True)
    table.add_column("Status", no_wrap=True)
    table.add_column("Notes", style="dim")

    for appointment in appointments:
        style = STATUS_STYLES.get(appointment.status.value, "")
        table.add_row(
            appointment.id,
            str(appointment.date),
            f"{appointment.start_time}-{appointment.end_time}",
            appointment.type.value,
            f"[{style}]{appointment.status.value}[/{style}]" if style else appointment.status.value,
            escape(appointment.notes or ""),
        )
    return table


@app.command()
def slots(
    date: Annotated[str, typer.Argument(help="Day to search (YYYY-MM-DD)")],
    config_file: ConfigOption = None,
    duration: Annotated[Optional[int], typer.Option("--duration", "-d", help="Appointment length in minutes")] = None,
    exclude: Annotated[Optional[str], typer.Option("--exclude", help="Appointment ID whose slot counts as free")] = None,
    now: NowOption = None,
):
    """
    List bookable start times for a day.

    Examples:

        shopcalendar slots 2025-09-22
        shopcalendar slots 2025-09-22 --duration 60
    """
    try:
        ctx = _load_context(config_file)
        day = parse_local_date(date)
        length = duration if duration is not None else ctx.config.calendar.default_appointment_duration

        if not is_shop_open(day, ctx.config.to_shop_hours()):
            console.print(f"[yellow]The shop is closed on {day}.[/yellow]")
            return

        found = asyncio.run(
            ctx.service.available_slots(day, duration=duration, exclude_id=exclude, now=ctx.now(now))
        )

        console.print()
        if not found:
            console.print(f"[yellow]No free {format_duration(length)} slots on {day}.[/yellow]")
        else:
            console.print(f"[bold green]{len(found)} free {format_duration(length)} slot(s) on {day}:[/bold green]\n")
            for start in found:
                console.print(f"  {start}  ({format_time_12h(start)})")
        console.print()

    except (SchedulingError, FileNotFoundError, ValueError) as e:
        _fail(e)


@app.command()
def hours(config_file: ConfigOption = None):
    """
    Show the shop's weekly opening hours.
    """
    try:
        ctx = _load_context(config_file)

        table = Table(title=f"Opening hours - {ctx.config.shop_id}", show_header=True, header_style="bold cyan")
        table.add_column("Day", style="bold yellow")
        table.add_column("Hours")

        for entry in sorted(ctx.config.to_shop_hours(), key=lambda e: e.day_of_week):
            if entry.is_closed:
                table.add_row(entry.day_name, "[dim]closed[/dim]")
            else:
                table.add_row(entry.day_name, f"{entry.open_time} - {entry.close_time}")

        console.print()
        console.print(table)
        console.print()

    except (SchedulingError, FileNotFoundError, ValueError) as e:
        _fail(e)


@app.command()
def agenda(
    date: Annotated[Optional[str], typer.Argument(help="Anchor date (YYYY-MM-DD). Defaults to today.")] = None,
    config_file: ConfigOption = None,
    view: Annotated[CalendarView, typer.Option("--view", "-v", help="Calendar view")] = CalendarView.WEEK,
    include_inactive: Annotated[bool, typer.Option("--all", help="Include canceled and declined appointments")] = False,
):
    """
    Show the appointments of a month, week, day or list view.
    """
    try:
        ctx = _load_context(config_file)
        anchor = parse_local_date(date) if date else now_wall_clock(ctx.config.timezone).date

        session = CalendarSession(ctx.cache, current_date=anchor, view=view, prefetch=False)
        asyncio.run(session.refresh())
        if session.error is not None:
            _fail(session.error)

        appointments = [
            appointment for appointment in session.appointments
            if include_inactive or appointment.is_active
        ]

        console.print()
        if not appointments:
            console.print(f"[yellow]No appointments in {session.date_range}.[/yellow]")
        else:
            console.print(_appointment_table(f"{view.value.title()} {session.date_range}", appointments))
        console.print()

    except (SchedulingError, FileNotFoundError, ValueError) as e:
        _fail(e)


@app.command()
def reschedule(
    appointment_id: Annotated[str, typer.Argument(help="Appointment ID")],
    config_file: ConfigOption = None,
    date: Annotated[Optional[str], typer.Option("--date", help="New date (YYYY-MM-DD)")] = None,
    start: Annotated[Optional[str], typer.Option("--start", help="New start time (HH:MM)")] = None,
    end: Annotated[Optional[str], typer.Option("--end", help="New end time (HH:MM)")] = None,
    status: Annotated[Optional[str], typer.Option("--status", help="Set the status explicitly")] = None,
    now: NowOption = None,
):
    """
    Preview moving an appointment without saving it.

    Shows the fields the update would write, including the status reset to
    pending when the date or start time changes.
    """
    try:
        ctx = _load_context(config_file)
        existing: Optional[Appointment] = ctx.store.get(appointment_id)
        if existing is None:
            console.print(f"[bold red]Error:[/bold red] Unknown appointment: {escape(appointment_id)}")
            raise typer.Exit(1)

        changes = {
            name: value
            for name, value in (("date", date), ("start_time", start), ("end_time", end), ("status", status))
            if value is not None
        }
        if start is not None and end is None:
            # Keep the length when only the start moves.
            new_start = parse_local_time(start)
            changes["end_time"] = str(new_start.add_minutes(existing.duration_minutes()))

        patch = AppointmentPatch.from_mapping(changes)
        result, updated = asyncio.run(ctx.service.preview_update(existing, patch, now=ctx.now(now)))

        console.print()
        console.print(_appointment_table("Current", [existing]))
        console.print(_appointment_table("After update", [updated]))
        if result.rescheduled:
            console.print(f"\n[bold]Rescheduled[/bold]: status will be [bold]{updated.status.value}[/bold]")
        elif not result.fields:
            console.print("\n[yellow]Nothing to change.[/yellow]")
        console.print()

    except (SchedulingError, FileNotFoundError, ValueError) as e:
        _fail(e)


@app.command()
def version():
    """
    Show version information.
    """
    from .. import __version__
    console.print(f"\n[bold cyan]shopcalendar[/bold cyan] version [bold]{__version__}[/bold]\n")


if __name__ == "__main__":
    app()
