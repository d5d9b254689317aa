"""Client-side autosave coordinator.

Per-document state machine that debounces content changes into save
attempts, detects conflicts through fingerprint comparison and follows
connectivity changes.

States: idle, pending, saving, saved, offline, error, conflict.

Rules:
  - Content whose fingerprint equals the base fingerprint is "saved" without
    a network call
  - One save in flight at a time; a save requested meanwhile is queued and
    re-run afterwards with the content current at that moment
  - conflict outranks offline; offline outranks every other state while
    the connection is down
  - Errors become state, never exceptions. Only malformed content (a caller
    bug) raises

Retries happen only on a recoverable condition: content changed,
connectivity restored or conflict resolved, plus an explicit flush. The delay
per condition comes from `retry_delay_for`; override it to substitute a
backoff policy without touching the state machine.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Iterable, Optional

import httpx

from ..config import settings
from .content_converter import extract_anchor_ids, html_word_count
from .fingerprint import compute_fingerprint, normalize_anchor_ids

logger = logging.getLogger(__name__)


class AutosaveStatus(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    SAVING = "saving"
    SAVED = "saved"
    OFFLINE = "offline"
    ERROR = "error"
    CONFLICT = "conflict"


class RecoveryTrigger(str, Enum):
    """Conditions that (re)schedule a save."""

    CONTENT_CHANGED = "content_changed"
    CONNECTIVITY_RESTORED = "connectivity_restored"
    CONFLICT_RESOLVED = "conflict_resolved"


class ConflictResolution(str, Enum):
    KEEP_LOCAL = "keep_local"
    ACCEPT_REMOTE = "accept_remote"


# =============================================================================
# Persistence boundary
# =============================================================================


@dataclass(frozen=True)
class DocumentContent:
    """Editable content as the client currently holds it."""

    html: str = ""
    structure: Any = None
    anchor_ids: tuple[str, ...] = ()
    word_count: Optional[int] = None

    @property
    def fingerprint(self) -> str:
        return compute_fingerprint(self.html, self.structure, self.anchor_ids)


@dataclass(frozen=True)
class ServerDocumentState:
    """Server-side content surfaced by a conflict."""

    html: str
    structure: Any
    word_count: int
    updated_at: Optional[datetime]
    fingerprint: str


@dataclass(frozen=True)
class SaveRequest:
    document_id: str
    html: str
    structure: Any
    anchor_ids: list[str]
    word_count: int
    base_fingerprint: Optional[str]

    def to_payload(self) -> dict[str, Any]:
        return {
            "html": self.html,
            "structure": self.structure,
            "anchor_ids": self.anchor_ids,
            "word_count": self.word_count,
            "base_fingerprint": self.base_fingerprint,
            "snapshot_only": False,
        }


@dataclass(frozen=True)
class SaveAck:
    fingerprint: str
    snapshot_id: Optional[str] = None


class AutosaveConflictError(Exception):
    """The base fingerprint is stale; carries the server's current state."""

    def __init__(self, server_state: ServerDocumentState):
        self.server_state = server_state
        super().__init__(f"Autosave conflict (server fingerprint {server_state.fingerprint[:12]})")


class AutosaveTransportError(Exception):
    """A save failed for a reason other than a conflict."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class AutosaveTransport(ABC):
    """Sends one save attempt to the persistence boundary."""

    @abstractmethod
    async def save(self, request: SaveRequest) -> SaveAck:
        """
        Persist content.

        Raises:
            AutosaveConflictError: The request's base fingerprint is stale
            AutosaveTransportError: Any other rejection
        """


class HttpAutosaveTransport(AutosaveTransport):
    """Autosave over HTTP against POST /documents/{id}/autosave."""

    def __init__(self, client: httpx.AsyncClient, timeout: Optional[float] = None):
        self._client = client
        self._timeout = timeout if timeout is not None else settings.autosave_request_timeout_seconds

    async def save(self, request: SaveRequest) -> SaveAck:
        response = await self._client.post(
            f"/documents/{request.document_id}/autosave",
            json=request.to_payload(),
            timeout=self._timeout,
        )

        if response.status_code == 409:
            raise AutosaveConflictError(self._parse_conflict(response, request))

        if response.is_error:
            raise AutosaveTransportError(
                f"Autosave failed with status {response.status_code}: {self._error_message(response)}",
                status_code=response.status_code,
            )

        data = response.json()
        return SaveAck(fingerprint=data["fingerprint"], snapshot_id=data.get("snapshot_id"))

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            detail = response.json().get("detail")
        except ValueError:
            return response.text[:200]
        return detail if isinstance(detail, str) else str(detail)

    @staticmethod
    def _parse_conflict(response: httpx.Response, request: SaveRequest) -> ServerDocumentState:
        try:
            body = response.json()
        except ValueError:
            body = {}
        detail = body.get("detail", body) if isinstance(body, dict) else {}
        document = detail.get("document") or {}

        updated_at = document.get("updated_at")
        if isinstance(updated_at, str):
            updated_at = datetime.fromisoformat(updated_at)

        return ServerDocumentState(
            html=document.get("html", request.html),
            structure=document.get("structure"),
            word_count=document.get("word_count", 0),
            updated_at=updated_at,
            fingerprint=detail.get("fingerprint", ""),
        )


# =============================================================================
# Coordinator
# =============================================================================


StatusCallback = Callable[[AutosaveStatus], None]
ConflictCallback = Callable[[ServerDocumentState], None]


@dataclass
class AutosaveCallbacks:
    on_status_change: Optional[StatusCallback] = None
    on_conflict: Optional[ConflictCallback] = None
    on_after_save: Optional[Callable[[SaveAck], None]] = None
    on_base_fingerprint_change: Optional[Callable[[Optional[str]], None]] = None


@dataclass
class _SaveState:
    saving: bool = False
    queued: bool = False
    idle: asyncio.Event = field(default_factory=asyncio.Event)


class AutosaveCoordinator:
    """
    Autosave state machine for one document.

    Runs on one event loop; instances for different documents share
    nothing and may run side by side.

    Args:
        document_id: Document being edited
        transport: Persistence boundary
        base_fingerprint: Fingerprint of the content last loaded from the server
        content: Initial editor content
        enabled: Whether changes schedule saves
        debounce_seconds: Delay after a content change
        reconnect_delay_seconds: Delay after connectivity is restored
        callbacks: Optional observers of status, conflicts and saves
    """

    def __init__(
        self,
        document_id: str,
        transport: AutosaveTransport,
        *,
        base_fingerprint: Optional[str] = None,
        content: Optional[DocumentContent] = None,
        enabled: bool = True,
        debounce_seconds: Optional[float] = None,
        reconnect_delay_seconds: Optional[float] = None,
        callbacks: Optional[AutosaveCallbacks] = None,
    ):
        self.document_id = str(document_id)
        self._transport = transport
        self._base_fingerprint = base_fingerprint
        self._content = content or DocumentContent()
        self._enabled = enabled
        self._debounce = settings.autosave_debounce_seconds if debounce_seconds is None else debounce_seconds
        self._reconnect_delay = (
            settings.autosave_reconnect_delay_seconds if reconnect_delay_seconds is None else reconnect_delay_seconds
        )
        self._callbacks = callbacks or AutosaveCallbacks()

        self._status = AutosaveStatus.IDLE
        self._error: Optional[str] = None
        self._conflict: Optional[ServerDocumentState] = None
        self._online = True
        self._timer: Optional[asyncio.Task] = None
        self._save = _SaveState()
        self._save.idle.set()

    # -------------------------------------------------------------------------
    # Observable state
    # -------------------------------------------------------------------------

    @property
    def status(self) -> AutosaveStatus:
        return self._status

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def conflict(self) -> Optional[ServerDocumentState]:
        return self._conflict

    @property
    def base_fingerprint(self) -> Optional[str]:
        return self._base_fingerprint

    @property
    def content(self) -> DocumentContent:
        return self._content

    @property
    def is_online(self) -> bool:
        return self._online

    @property
    def has_pending_timer(self) -> bool:
        return self._timer is not None and not self._timer.done()

    # -------------------------------------------------------------------------
    # Inputs
    # -------------------------------------------------------------------------

    def update_content(
        self,
        html: Optional[str],
        structure: Any = None,
        anchor_ids: Optional[Iterable[str]] = None,
        word_count: Optional[int] = None,
    ) -> None:
        """
        Record the editor's latest content.

        Raises:
            MalformedContentError: If the content cannot be fingerprinted
        """
        content = DocumentContent(
            html=html or "",
            structure=structure,
            anchor_ids=tuple(normalize_anchor_ids(anchor_ids)),
            word_count=word_count,
        )
        fingerprint = content.fingerprint
        self._content = content

        if not self._enabled or self._status == AutosaveStatus.CONFLICT:
            return

        if fingerprint == self._base_fingerprint and not self._save.saving:
            self._cancel_timer()
            self._transition(AutosaveStatus.SAVED)
            return

        self.handle_recoverable_condition(RecoveryTrigger.CONTENT_CHANGED)

    def set_online(self, online: bool) -> None:
        """Follow a connectivity change."""
        if online == self._online:
            return
        self._online = online

        if not online:
            logger.info(f"Autosave for {self.document_id} offline")
            self._cancel_timer()
            self._transition(AutosaveStatus.OFFLINE)
            return

        logger.info(f"Autosave for {self.document_id} back online")
        if self._status == AutosaveStatus.OFFLINE:
            self._transition(AutosaveStatus.PENDING)
        self.handle_recoverable_condition(RecoveryTrigger.CONNECTIVITY_RESTORED)

    def set_enabled(self, enabled: bool) -> None:
        if enabled == self._enabled:
            return
        self._enabled = enabled
        if not enabled:
            self._cancel_timer()
            if self._status != AutosaveStatus.CONFLICT:
                self._transition(AutosaveStatus.IDLE, force=True)
            return
        self.handle_recoverable_condition(RecoveryTrigger.CONTENT_CHANGED)

    def handle_recoverable_condition(self, trigger: RecoveryTrigger) -> None:
        """Schedule a save in response to a recoverable condition."""
        if not self._enabled or not self._online or self._status == AutosaveStatus.CONFLICT:
            return
        delay = self.retry_delay_for(trigger)
        if delay is not None:
            self._schedule(delay)

    def retry_delay_for(self, trigger: RecoveryTrigger) -> Optional[float]:
        """Seconds to wait before saving after `trigger`; None skips the save."""
        if trigger == RecoveryTrigger.CONTENT_CHANGED:
            return self._debounce
        if trigger == RecoveryTrigger.CONNECTIVITY_RESTORED:
            return self._reconnect_delay
        return 0.0

    async def flush(self) -> AutosaveStatus:
        """Cancel any pending timer and save now, returning once the save settles."""
        self._cancel_timer()
        await self._run_save()
        return self._status

    def resolve_conflict(self, resolution: ConflictResolution) -> DocumentContent:
        """
        Resolve an outstanding conflict and resume scheduling.

        KEEP_LOCAL rebases the local content onto the server's fingerprint
        so the next save overwrites the server copy. ACCEPT_REMOTE replaces
        the local content with the server's.

        Returns:
            The content the editor should now show
        """
        server = self._conflict
        if self._status != AutosaveStatus.CONFLICT or server is None:
            raise RuntimeError(f"No conflict to resolve for document {self.document_id}")

        self._conflict = None
        self._set_base_fingerprint(server.fingerprint)
        logger.info(f"Autosave conflict on {self.document_id} resolved: {resolution.value}")

        if resolution == ConflictResolution.ACCEPT_REMOTE:
            self._content = DocumentContent(
                html=server.html,
                structure=server.structure,
                anchor_ids=tuple(normalize_anchor_ids(extract_anchor_ids(server.html))),
                word_count=server.word_count,
            )
            self._transition(self._unless_offline(AutosaveStatus.SAVED), force=True)
            if self._content.fingerprint == self._base_fingerprint:
                return self._content

        self._transition(self._unless_offline(AutosaveStatus.PENDING), force=True)
        self.handle_recoverable_condition(RecoveryTrigger.CONFLICT_RESOLVED)
        return self._content

    async def wait_until_settled(self) -> None:
        """Wait for any pending timer and in-flight save to finish."""
        while True:
            timer = self._timer
            if timer is not None and not timer.done():
                await asyncio.wait({timer})
                continue
            if self._save.saving:
                await self._save.idle.wait()
                continue
            return

    async def close(self) -> None:
        """Cancel the pending timer and let an in-flight save finish."""
        self._cancel_timer()
        await self._save.idle.wait()

    # -------------------------------------------------------------------------
    # Scheduling
    # -------------------------------------------------------------------------

    def _schedule(self, delay: float) -> None:
        if self._status != AutosaveStatus.SAVING:
            self._transition(AutosaveStatus.PENDING)
        self._cancel_timer()
        self._timer = asyncio.get_running_loop().create_task(self._delayed_save(delay))

    async def _delayed_save(self, delay: float) -> None:
        await asyncio.sleep(delay)
        # Detach before saving so cancelling the timer never interrupts a save
        self._timer = None
        await self._run_save()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            if not self._timer.done():
                self._timer.cancel()
            self._timer = None

    async def _run_save(self) -> None:
        if not self._enabled:
            return

        if self._save.saving:
            self._save.queued = True
            await self._save.idle.wait()
            return

        self._save.saving = True
        self._save.idle.clear()
        try:
            while True:
                self._save.queued = False
                await self._save_once()
                if not self._save.queued:
                    break
                if self._status in (AutosaveStatus.CONFLICT, AutosaveStatus.OFFLINE):
                    break
        finally:
            self._save.saving = False
            self._save.queued = False
            self._save.idle.set()

    async def _save_once(self) -> None:
        content = self._content
        if not self._online:
            self._transition(AutosaveStatus.OFFLINE)
            return
        if self._status == AutosaveStatus.CONFLICT:
            return

        fingerprint = content.fingerprint
        if fingerprint == self._base_fingerprint:
            self._transition(AutosaveStatus.SAVED)
            return

        request = SaveRequest(
            document_id=self.document_id,
            html=content.html,
            structure=content.structure,
            anchor_ids=list(content.anchor_ids),
            word_count=content.word_count if content.word_count is not None else html_word_count(content.html),
            base_fingerprint=self._base_fingerprint,
        )

        self._error = None
        self._transition(AutosaveStatus.SAVING)
        try:
            ack = await self._transport.save(request)
        except AutosaveConflictError as e:
            logger.warning(f"Autosave conflict on document {self.document_id}")
            self._conflict = e.server_state
            self._transition(AutosaveStatus.CONFLICT, force=True)
            if self._callbacks.on_conflict:
                self._callbacks.on_conflict(e.server_state)
            return
        except (AutosaveTransportError, httpx.HTTPError, OSError, asyncio.TimeoutError) as e:
            logger.warning(f"Autosave failed for document {self.document_id}: {e}")
            self._error = str(e) or type(e).__name__
            self._transition(AutosaveStatus.ERROR)
            return
        except Exception as e:
            logger.error(f"Unexpected autosave failure for document {self.document_id}: {e}", exc_info=True)
            self._error = str(e) or type(e).__name__
            self._transition(AutosaveStatus.ERROR)
            return

        if ack.fingerprint != fingerprint:
            logger.warning(
                f"Server acknowledged fingerprint {ack.fingerprint[:12]} for {self.document_id}, "
                f"expected {fingerprint[:12]}"
            )
        self._set_base_fingerprint(fingerprint)
        self._transition(AutosaveStatus.SAVED)
        if self._callbacks.on_after_save:
            self._callbacks.on_after_save(ack)

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    def _set_base_fingerprint(self, fingerprint: Optional[str]) -> None:
        if fingerprint == self._base_fingerprint:
            return
        self._base_fingerprint = fingerprint
        if self._callbacks.on_base_fingerprint_change:
            self._callbacks.on_base_fingerprint_change(fingerprint)

    def _unless_offline(self, status: AutosaveStatus) -> AutosaveStatus:
        return status if self._online else AutosaveStatus.OFFLINE

    def _transition(self, new: AutosaveStatus, force: bool = False) -> None:
        if not force:
            if self._status == AutosaveStatus.CONFLICT and new != AutosaveStatus.CONFLICT:
                return
            if not self._online and new != AutosaveStatus.CONFLICT:
                new = AutosaveStatus.OFFLINE

        if new == self._status:
            return

        logger.debug(f"Autosave {self.document_id}: {self._status.value} -> {new.value}")
        self._status = new
        if self._callbacks.on_status_change:
            self._callbacks.on_status_change(new)
