"""Reconciliation engine: periodic sweep, single-conversation refresh, webhook fast path."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from pydantic import ValidationError

from ..config import SyncConfig
from ..remote.client import RemoteAPIError, RemoteClient
from .ids import InvalidConversationId, validate_conversation_id
from .models import (
    ConversationSummary,
    Message,
    SweepReport,
    WebhookMark,
    WebhookNotification,
    summary_from_listing,
)
from .storage import CacheStore, StateStore

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _log_task_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Background task failed: %s", exc, exc_info=exc)


class MirrorEngine:
    """Keeps the local cache in step with the remote messenger.

    The engine owns the summary index. Only :meth:`run_sweep` replaces it, and
    at most one sweep runs at a time; a second caller gets an
    ``already_running`` report back instead of waiting.
    """

    def __init__(
        self,
        client: RemoteClient,
        cache: CacheStore,
        state: StateStore,
        sync: SyncConfig,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._client = client
        self._cache = cache
        self._state = state
        self._sync = sync
        self._sleep = sleep

        self._index: dict[str, ConversationSummary] = {}
        self._webhook_seen: dict[str, WebhookMark] = {}
        self._last_report: Optional[SweepReport] = None
        self._running = False
        self._background: set[asyncio.Task] = set()
        self._pending_sweep: Optional[asyncio.Task] = None

    # ── State ──

    @property
    def index(self) -> dict[str, ConversationSummary]:
        return self._index

    @property
    def webhook_seen(self) -> dict[str, WebhookMark]:
        return self._webhook_seen

    @property
    def last_report(self) -> Optional[SweepReport]:
        return self._last_report

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def cache(self) -> CacheStore:
        return self._cache

    @property
    def client(self) -> RemoteClient:
        return self._client

    def load_state(self) -> None:
        self._index = self._state.load_index()
        self._webhook_seen = self._state.load_webhook_seen()
        self._last_report = self._state.load_status()
        logger.info(
            "Loaded state: %d chats in index, %d webhook marks",
            len(self._index), len(self._webhook_seen),
        )

    def save_state(self) -> None:
        self._state.save_index(self._index)
        self._state.save_webhook_seen(self._webhook_seen)
        if self._last_report:
            self._state.save_status(self._last_report)

    # ── Refresh ──

    async def refresh_conversation(self, conversation_id: str) -> bool:
        """Fetch the latest message window and write it to the cache.

        Returns False (leaving the cached copy untouched) on an invalid id, a
        remote failure, a malformed or empty response, or a failed write.
        """
        try:
            validate_conversation_id(conversation_id)
        except InvalidConversationId as e:
            logger.warning("Refusing to refresh %r: %s", conversation_id, e)
            return False

        try:
            raw = await self._client.get_recent_messages(conversation_id, self._sync.message_window)
        except RemoteAPIError as e:
            logger.error("Error updating %s: %s", conversation_id, e)
            return False

        if not raw:
            logger.error("No messages for %s", conversation_id)
            return False
        try:
            messages = [Message.model_validate(m) for m in raw]
        except ValidationError as e:
            logger.error("Malformed messages for %s: %s", conversation_id, e.errors()[:1])
            return False

        if self._cache.save(conversation_id, messages) is None:
            return False
        logger.info("Cache updated: %s (%d msgs)", conversation_id, len(messages))
        return True

    # ── Webhook ──

    def handle_webhook(self, notification: WebhookNotification) -> bool:
        """Record the push and report whether the conversation should be refreshed."""
        try:
            validate_conversation_id(notification.conversation_id)
        except InvalidConversationId as e:
            logger.warning("Ignoring webhook for invalid chat id: %s", e)
            return False

        logger.info("New message in chat: %s", notification.conversation_id)
        self._webhook_seen[notification.conversation_id] = WebhookMark(
            last_message_id=notification.message_id,
            at=time.time(),
        )
        return True

    def _track(self, task: asyncio.Task) -> asyncio.Task:
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        task.add_done_callback(_log_task_failure)
        return task

    def schedule_refresh(self, conversation_id: str) -> asyncio.Task:
        """Start a refresh in the background without waiting for it."""
        return self._track(asyncio.create_task(self.refresh_conversation(conversation_id)))

    def schedule_sweep(self) -> Optional[asyncio.Task]:
        if self._running or (self._pending_sweep is not None and not self._pending_sweep.done()):
            return None
        self._pending_sweep = self._track(asyncio.create_task(self.run_sweep()))
        return self._pending_sweep

    # ── Sweep ──

    async def _list_all(self) -> tuple[list[dict], bool]:
        """Page through the listing. Returns the chats and whether a page failed."""
        page_size = self._sync.page_size
        limit = self._sync.max_conversations
        chats: list[dict] = []
        offset = 0
        while offset < limit:
            try:
                page = await self._client.list_conversations(offset, page_size)
            except RemoteAPIError as e:
                logger.error("Listing failed at offset %d: %s", offset, e)
                return chats, True
            if not page:
                break
            chats.extend(page[: limit - len(chats)])
            if len(page) < page_size:
                break
            offset += page_size
            if offset < limit:
                await self._sleep(self._sync.page_delay_seconds)
        return chats, False

    async def run_sweep(self) -> SweepReport:
        if self._running:
            logger.info("Sync already running, skipping")
            return SweepReport(status="already_running")
        self._running = True
        try:
            report = await self._sweep()
        finally:
            self._running = False
        self._last_report = report
        self._state.save_status(report)
        self._state.save_webhook_seen(self._webhook_seen)
        return report

    async def _sweep(self) -> SweepReport:
        started = time.monotonic()
        report = SweepReport(started_at=_now_iso())
        logger.info("Starting periodic sync...")

        chats, listing_failed = await self._list_all()
        if listing_failed:
            report.listing_failed = True
            report.errors += 1
        logger.info("Fetched %d chats from remote", len(chats))

        fresh: dict[str, ConversationSummary] = {}
        operator_id = self._client.operator_id
        for chat in chats:
            try:
                summary = summary_from_listing(chat, operator_id)
            except (KeyError, TypeError, ValueError, AttributeError, ValidationError) as e:
                logger.warning("Skipping malformed chat in listing: %s", e)
                continue
            fresh.setdefault(summary.conversation_id, summary)

        previous = self._index
        first = True
        for conv_id, summary in fresh.items():
            report.checked += 1
            prev = previous.get(conv_id)
            if prev is not None and prev.last_message_id == summary.last_message_id:
                continue

            if not first:
                await self._sleep(self._sync.refresh_delay_seconds)
            first = False

            try:
                ok = await self.refresh_conversation(conv_id)
            except Exception as e:
                logger.error("Unexpected error updating %s: %s", conv_id, e, exc_info=True)
                ok = False

            if ok:
                report.updated += 1
            else:
                report.errors += 1
                # keep the acknowledged id so the next sweep sees it dirty again
                fresh[conv_id] = summary.model_copy(
                    update={"last_message_id": prev.last_message_id if prev else ""}
                )

        if listing_failed and not fresh:
            logger.warning("Listing returned nothing, keeping previous index")
        else:
            self._index = fresh
            self._state.save_index(self._index)

        report.finished_at = _now_iso()
        report.duration_seconds = round(time.monotonic() - started, 1)
        if report.updated > 0:
            logger.info(
                "Sync done: %d checked, %d updated, %d errors (%.1fs)",
                report.checked, report.updated, report.errors, report.duration_seconds,
            )
        else:
            logger.info(
                "Sync: all up to date (%d chats, %d errors, %.1fs)",
                report.checked, report.errors, report.duration_seconds,
            )
        return report
