"""Command-line interface for reading and posting comments on a mail thread."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, Optional

import httpx
import typer

from . import rich_logger
from .attachments import AttachmentTransfer
from .config import Settings, get_settings
from .directory import DirectoryClient
from .errors import CommentSyncError
from .graph import build_http_client
from .host import EmlMailHost
from .identity import TokenBroker, build_identity_client
from .models import UploadFile
from .notifications import NotificationDispatcher
from .profile import TransportProfile, select_profile
from .store import CommentStoreClient
from .sync import CommentSession

console = rich_logger.console
app = typer.Typer(help="Internal comments for mail conversations.")
config_app = typer.Typer(help="Inspect configuration")
app.add_typer(config_app, name="config")

MessageArg = Annotated[Path, typer.Argument(exists=True, dir_okay=False, help="RFC 822 (.eml) file of the open message.")]
ConversationOpt = Annotated[
    Optional[str], typer.Option("--conversation-id", help="Host conversation id of the message, if known.")
]
PlatformOpt = Annotated[Optional[str], typer.Option("--platform", help="Mail host platform. Defaults to HOST_PLATFORM.")]


@dataclass(slots=True)
class Services:
    settings: Settings
    profile: TransportProfile
    broker: TokenBroker
    http: httpx.AsyncClient
    store: CommentStoreClient
    transfer: AttachmentTransfer
    dispatcher: NotificationDispatcher
    directory: DirectoryClient


@asynccontextmanager
async def _open_services(settings: Settings, platform: Optional[str]) -> AsyncIterator[Services]:
    profile = select_profile(settings, platform)
    broker = TokenBroker(build_identity_client(settings), profile)
    async with build_http_client(settings) as http:
        yield Services(
            settings=settings,
            profile=profile,
            broker=broker,
            http=http,
            store=CommentStoreClient(settings, broker, http),
            transfer=AttachmentTransfer(settings, broker, http, profile),
            dispatcher=NotificationDispatcher(settings, broker, http),
            directory=DirectoryClient(settings, broker, http),
        )


def _session(services: Services, message: Path, conversation_id: Optional[str]) -> CommentSession:
    settings = services.settings
    host = EmlMailHost(
        message,
        platform=services.profile.platform,
        user_display_name=settings.host.user_display_name,
        conversation_id=conversation_id,
    )
    return CommentSession(
        settings,
        host=host,
        profile=services.profile,
        store=services.store,
        dispatcher=services.dispatcher,
        transfer=services.transfer,
    )


def _bootstrap() -> Settings:
    settings = get_settings()
    rich_logger.configure_logging(settings)
    return settings


def _run(coro) -> None:
    try:
        asyncio.run(coro)
    except (CommentSyncError, ValueError) as exc:
        rich_logger.log_error(str(exc), error=exc)
        raise typer.Exit(code=1) from exc


async def _list_comments(settings: Settings, message: Path, conversation_id: Optional[str], platform: Optional[str]) -> None:
    async with _open_services(settings, platform) as services:
        async with _session(services, message, conversation_id) as session:
            thread_key = await session.start()
            if thread_key is None:
                raise CommentSyncError("Could not resolve a conversation for this message.")
            console.print(rich_logger.render_comment_history(session.comment_history, thread_key=thread_key))


@app.command("list")
def list_comments(
    message: MessageArg,
    conversation_id: ConversationOpt = None,
    platform: PlatformOpt = None,
) -> None:
    """Print the comment history of the message's conversation."""
    settings = _bootstrap()
    _run(_list_comments(settings, message, conversation_id, platform))


async def _post_comment(
    settings: Settings,
    message: Path,
    text: str,
    attach: list[Path],
    conversation_id: Optional[str],
    platform: Optional[str],
) -> None:
    files = [await UploadFile.from_path(path) for path in attach]
    async with _open_services(settings, platform) as services:
        async with _session(services, message, conversation_id) as session:
            if await session.start() is None:
                raise CommentSyncError("Could not resolve a conversation for this message.")
            result = await session.submit(text, files)
            rich_logger.log_success(
                "Comment posted",
                record_id=result.record.id,
                attachments=[ref.file_name for ref in result.attachments],
                notified=result.recipients if result.notified else [],
            )
            console.print(rich_logger.render_comment_history(session.comment_history, thread_key=session.thread_key))


@app.command("post")
def post_comment(
    message: MessageArg,
    text: Annotated[str, typer.Argument(help="Comment text; mentions as @[Name](address).")],
    attach: Annotated[
        Optional[list[Path]],
        typer.Option("--attach", "-a", exists=True, dir_okay=False, help="File to attach (repeatable)."),
    ] = None,
    conversation_id: ConversationOpt = None,
    platform: PlatformOpt = None,
) -> None:
    """Post a comment, upload attachments and notify mentioned people."""
    settings = _bootstrap()
    _run(_post_comment(settings, message, text, list(attach or []), conversation_id, platform))


async def _watch(
    settings: Settings,
    message: Path,
    conversation_id: Optional[str],
    platform: Optional[str],
    iterations: Optional[int],
) -> None:
    async with _open_services(settings, platform) as services:
        async with _session(services, message, conversation_id) as session:
            updates: asyncio.Queue[None] = asyncio.Queue()
            session.subscribe(lambda _records: updates.put_nowait(None))
            if await session.start() is None:
                raise CommentSyncError("Could not resolve a conversation for this message.")
            seen = 0
            while iterations is None or seen < iterations:
                await updates.get()
                seen += 1
                console.print(rich_logger.render_comment_history(session.comment_history, thread_key=session.thread_key))


@app.command("watch")
def watch(
    message: MessageArg,
    conversation_id: ConversationOpt = None,
    platform: PlatformOpt = None,
    iterations: Annotated[Optional[int], typer.Option(help="Stop after this many refreshes.")] = None,
) -> None:
    """Keep refreshing the comment history until interrupted."""
    settings = _bootstrap()
    try:
        _run(_watch(settings, message, conversation_id, platform, iterations))
    except KeyboardInterrupt:
        raise typer.Exit(code=0) from None


async def _people(settings: Settings, platform: Optional[str]) -> None:
    async with _open_services(settings, platform) as services:
        console.print(rich_logger.render_people(await services.directory.people()))


@app.command("people")
def people(platform: PlatformOpt = None) -> None:
    """List directory users with their mention markup."""
    settings = _bootstrap()
    _run(_people(settings, platform))


async def _download(
    settings: Settings,
    record_id: str,
    locator: str,
    output: Optional[Path],
    platform: Optional[str],
) -> None:
    async with _open_services(settings, platform) as services:
        result = await services.transfer.download(record_id, locator)
        if result.is_link:
            console.print(result.url)
            return
        target = output or Path(result.file_name)
        await result.save(target)
        rich_logger.log_success("Attachment saved", path=str(target))


@app.command("download")
def download(
    record_id: Annotated[str, typer.Argument(help="Comment record id.")],
    locator: Annotated[str, typer.Argument(help="Attachment locator (server-relative path or file name).")],
    output: Annotated[Optional[Path], typer.Option("--output", "-o", help="Where to save fetched bytes.")] = None,
    platform: PlatformOpt = None,
) -> None:
    """Resolve an attachment to a link, or fetch and save it."""
    settings = _bootstrap()
    _run(_download(settings, record_id, locator, output, platform))


@config_app.command("show")
def config_show() -> None:
    """Show the effective configuration (secrets masked)."""
    settings = get_settings()
    profile = select_profile(settings)
    console.print(
        rich_logger.create_settings_panel(
            {
                "graph": {
                    "base_url": settings.graph.base_url,
                    "site_id": settings.graph.site_id,
                    "list_id": settings.graph.list_id,
                    "site_url": settings.graph.site_url,
                    "filter_mode": settings.graph.filter_mode,
                },
                "identity": {
                    "client_id": settings.identity.client_id,
                    "authority": settings.identity.authority,
                    "scopes": " ".join(settings.identity.scopes),
                    "sharepoint_tenant": settings.identity.sharepoint_tenant,
                },
                "host": {
                    "platform": profile.platform,
                    "desktop": profile.desktop,
                    "upload_protocol": profile.upload_protocol,
                    "thread_index_fallback": profile.thread_index_fallback,
                    "user_display_name": settings.host.user_display_name,
                },
                "sync": {"refresh_interval_seconds": settings.sync.refresh_interval_seconds},
            }
        )
    )
