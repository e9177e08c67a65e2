"""Logging setup and Rich console rendering for the CLI.

structlog carries the component logs; Rich renders the comment history,
directory listings and configuration panels shown to the user.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Sequence
from datetime import datetime
from typing import Any, Optional

import structlog
from rich import box
from rich.console import Console, Group
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from .config import Settings
from .models import CommentRecord

# Global console instance for rendering
console = Console()
err_console = Console(stderr=True)

_LOGGING_CONFIGURED = False

_SENSITIVE_KEYS = ("token", "secret", "password", "client_id")


def configure_logging(settings: Settings) -> None:
    """Initialize structlog and stdlib logging formatting."""
    # Idempotent setup
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
    ]
    if settings.log_json_enabled:
        processors.append(structlog.processors.JSONRenderer())
    elif settings.log_rich_enabled:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    else:
        processors.append(structlog.processors.KeyValueRenderer(key_order=["event"]))
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(level=level)
    _LOGGING_CONFIGURED = True


def _safe_json_format(data: Any, max_length: int = 2000) -> str:
    """Format data as JSON with truncation."""
    json_str = json.dumps(data, indent=2, default=str, ensure_ascii=False)
    if len(json_str) > max_length:
        json_str = json_str[:max_length] + "\n... (truncated)"
    return json_str


def _when(value: Optional[datetime]) -> str:
    if value is None:
        return ""
    return value.astimezone().strftime("%Y-%m-%d %H:%M")


def _comment_block(record: CommentRecord) -> Group:
    author = record.author_display_name or "?"
    header = Text.assemble(
        (f"({author[:1].upper()}) ", "bold white on grey23"),
        (author, "bold"),
        ("  ", ""),
        (_when(record.created_at), "dim"),
    )
    parts: list[Any] = [header, Text(record.body_plain_text)]
    if record.mentioned_display_names:
        parts.append(Text("  ".join(f"@{name}" for name in record.mentioned_display_names), style="blue"))
    for attachment in record.attachments:
        parts.append(Text(f"📎 {attachment.file_name}", style="cyan"))
    return Group(*parts)


def render_comment_history(records: Sequence[CommentRecord], *, thread_key: Optional[str] = None) -> Panel:
    """Build the panel that lists every comment of a thread, oldest first."""
    if records:
        blocks: list[Any] = []
        for index, record in enumerate(records):
            if index:
                blocks.append(Text(""))
            blocks.append(_comment_block(record))
        body: Any = Group(*blocks)
    else:
        body = Text("No comments yet.", style="dim")
    title = "[bold cyan]Comments[/bold cyan]"
    if thread_key:
        title = f"{title} [dim]{escape(thread_key)}[/dim]"
    return Panel(body, title=title, border_style="cyan", box=box.ROUNDED, padding=(0, 1))


def render_people(people: Sequence[Any]) -> Table:
    """Tabulate directory people with their ready-to-paste mention markup."""
    table = Table(title="Directory", box=box.SIMPLE)
    table.add_column("Name", style="bold")
    table.add_column("Address", style="cyan")
    table.add_column("Mention", style="dim")
    for person in people:
        table.add_row(escape(person.display_name), escape(person.address), escape(person.mention))
    return table


def create_settings_panel(config: dict[str, Any]) -> Panel:
    """Create a panel showing the effective configuration."""
    tree = Tree("[bold bright_white]mail-comments[/bold bright_white]")

    for section, values in config.items():
        section_branch = tree.add(f"[bold cyan]{section}[/bold cyan]")
        if isinstance(values, dict):
            for key, value in values.items():
                # Mask sensitive values
                if any(marker in key.lower() for marker in _SENSITIVE_KEYS):
                    display_value = "***" if value else "[dim]not set[/dim]"
                else:
                    display_value = escape(str(value))
                section_branch.add(f"[yellow]{key}[/yellow]: [white]{display_value}[/white]")
        else:
            section_branch.add(f"[white]{escape(str(values))}[/white]")

    return Panel(
        tree,
        title="[bold white on blue]Configuration[/bold white on blue]",
        border_style="bright_blue",
        box=box.DOUBLE,
        padding=(1, 2),
    )


def log_error(message: str, error: Optional[Exception] = None, **kwargs: Any) -> None:
    """Print an error message with Rich formatting."""
    err_console.print(Text(f"✗ {message}", style="bold red"))

    if error or kwargs:
        error_data = kwargs.copy()
        if error:
            error_data["error_type"] = type(error).__name__
            error_data["error_message"] = str(error)

        details = _safe_json_format(error_data, max_length=500)
        panel = Panel(details, border_style="red", box=box.ROUNDED, title="[bold red]Error Details[/bold red]")
        err_console.print(panel)


def log_success(message: str, **kwargs: Any) -> None:
    """Print a success message with Rich formatting."""
    text = Text(f"✓ {message}", style="bold green")
    if kwargs:
        details = _safe_json_format(kwargs, max_length=500)
        console.print(text)
        console.print(Panel(details, border_style="green", box=box.ROUNDED))
    else:
        console.print(text)
