"""In-memory snapshot store.

Holds a bounded, per-document collection of immutable content snapshots and
a "current" pointer (the most recently created or restored snapshot).
Insertion beyond the bound evicts the oldest snapshots by timestamp; the
current snapshot is only evicted when the bound is zero. Eviction and the
current-pointer adjustment happen together so the pointer never refers to
an evicted id.

Stores are per document. SnapshotStoreRegistry hands out one store per
document id with an explicit get/reset lifecycle, so tenants never share a
collection.
"""

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Iterable, Optional

from pydantic import ValidationError

from ..config import settings
from ..schemas.snapshot import (
    EXPORT_FORMAT_VERSION,
    SnapshotContentSchema,
    SnapshotExportDocument,
    SnapshotExportItem,
    as_naive_utc,
)
from .content_converter import count_scenes, html_word_count
from .fingerprint import MalformedContentError, compute_fingerprint, normalize_anchor_ids, normalize_structure
from .snapshot_diff import SnapshotDiff, compare_snapshots

logger = logging.getLogger(__name__)


class SnapshotSource(str, Enum):
    """Provenance of a snapshot."""

    MANUAL = "manual"
    AUTOSAVE = "autosave"
    PREVIEW = "preview"
    ANALYTICS = "analytics"
    EXPORT = "export"


class SnapshotFormatError(ValueError):
    """An export document has an unrecognized or broken format."""


def serialize_structure(structure: Any) -> str:
    """Canonical JSON form of an outline, used for storage and comparison."""
    return json.dumps(
        normalize_structure(structure),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )


@dataclass(frozen=True)
class SnapshotContent:
    """
    Editable content captured by a snapshot.

    The outline is kept in serialized form so the snapshot cannot be
    mutated through a shared reference; `structure` parses a fresh copy.
    """

    html: str
    structure_json: str
    anchor_ids: tuple[str, ...]

    @property
    def structure(self) -> Any:
        return json.loads(self.structure_json)

    @classmethod
    def build(cls, html: Optional[str], structure: Any, anchor_ids: Optional[Iterable[str]]) -> "SnapshotContent":
        if html is not None and not isinstance(html, str):
            raise MalformedContentError(f"HTML body must be a string, got {type(html).__name__}")
        try:
            structure_json = serialize_structure(structure)
        except (TypeError, ValueError) as e:
            if isinstance(e, MalformedContentError):
                raise
            raise MalformedContentError(f"Structure is not JSON-serializable: {e}") from e
        return cls(
            html=html or "",
            structure_json=structure_json,
            anchor_ids=tuple(normalize_anchor_ids(anchor_ids)),
        )


@dataclass(frozen=True)
class ContentSnapshot:
    """
    Immutable capture of document state at a point in time.

    Attributes:
        id: Unique identifier, never reused
        timestamp: Creation instant (naive UTC)
        source: Provenance tag
        fingerprint: Content identity token at creation
        word_count: Word count, computed once at creation
        scene_count: Scene count from the outline, computed once at creation
        content: Captured body, outline and anchors
        label: Optional human-readable annotation
    """

    id: str
    timestamp: datetime
    source: SnapshotSource
    fingerprint: str
    word_count: int
    scene_count: int
    content: SnapshotContent
    label: Optional[str] = None

    def to_export_item(self) -> SnapshotExportItem:
        return SnapshotExportItem(
            id=self.id,
            timestamp=self.timestamp,
            source=self.source.value,
            label=self.label,
            fingerprint=self.fingerprint,
            word_count=self.word_count,
            scene_count=self.scene_count,
            content=SnapshotContentSchema(
                html=self.content.html,
                structure=self.content.structure,
                anchor_ids=list(self.content.anchor_ids),
            ),
        )


def build_snapshot(
    html: Optional[str],
    structure: Any = None,
    anchor_ids: Optional[Iterable[str]] = None,
    *,
    source: SnapshotSource = SnapshotSource.MANUAL,
    label: Optional[str] = None,
    word_count: Optional[int] = None,
    timestamp: Optional[datetime] = None,
    snapshot_id: Optional[str] = None,
) -> ContentSnapshot:
    """
    Build a snapshot with its fingerprint and derived counts.

    Word count falls back to the body's plain-text word count when the
    caller does not supply one.

    Raises:
        MalformedContentError: If the content has the wrong shape
    """
    content = SnapshotContent.build(html, structure, anchor_ids)
    structure_value = content.structure
    if word_count is not None and word_count < 0:
        raise MalformedContentError(f"word_count cannot be negative: {word_count}")

    return ContentSnapshot(
        id=snapshot_id or str(uuid.uuid4()),
        timestamp=timestamp or datetime.utcnow(),
        source=SnapshotSource(source),
        fingerprint=compute_fingerprint(content.html, structure_value, content.anchor_ids),
        word_count=word_count if word_count is not None else html_word_count(content.html),
        scene_count=count_scenes(structure_value),
        content=content,
        label=label,
    )


@dataclass
class _Entry:
    snapshot: ContentSnapshot
    seq: int


class SnapshotStore:
    """
    Bounded collection of snapshots for one document.

    All reads return None/empty on a miss and never raise. Ordering for
    eviction and listing is by timestamp, ties broken by insertion order.
    """

    def __init__(
        self,
        max_snapshots: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        max_snapshots = settings.snapshot_max_count if max_snapshots is None else max_snapshots
        if max_snapshots < 0:
            raise ValueError(f"max_snapshots cannot be negative: {max_snapshots}")
        self._max_snapshots = max_snapshots
        self._clock = clock or datetime.utcnow
        self._entries: dict[str, _Entry] = {}
        self._current_id: Optional[str] = None
        self._seq = 0

    @property
    def max_snapshots(self) -> int:
        return self._max_snapshots

    @property
    def count(self) -> int:
        return len(self._entries)

    @property
    def current_id(self) -> Optional[str]:
        return self._current_id

    # =========================================================================
    # Mutations
    # =========================================================================

    def create_snapshot(
        self,
        html: Optional[str],
        structure: Any = None,
        anchor_ids: Optional[Iterable[str]] = None,
        *,
        source: SnapshotSource = SnapshotSource.MANUAL,
        label: Optional[str] = None,
        word_count: Optional[int] = None,
    ) -> ContentSnapshot:
        """
        Capture the given content as a new snapshot and make it current.

        Raises:
            MalformedContentError: If the content has the wrong shape
        """
        snapshot = build_snapshot(
            html,
            structure,
            anchor_ids,
            source=source,
            label=label,
            word_count=word_count,
            timestamp=self._clock(),
        )
        self._insert(snapshot)
        self._current_id = snapshot.id
        self._enforce_limit()
        logger.debug(f"Created {snapshot.source.value} snapshot {snapshot.id} ({self.count} retained)")
        return snapshot

    def restore_snapshot(self, snapshot_id: str) -> Optional[ContentSnapshot]:
        """Point "current" at an existing snapshot and return it."""
        entry = self._entries.get(snapshot_id)
        if entry is None:
            return None
        self._current_id = snapshot_id
        return entry.snapshot

    def delete_snapshot(self, snapshot_id: str) -> bool:
        """Remove a snapshot; a deleted current pointer moves to the newest remaining."""
        if self._entries.pop(snapshot_id, None) is None:
            return False
        if self._current_id == snapshot_id:
            latest = self.get_latest_snapshot()
            self._current_id = latest.id if latest else None
        return True

    def clear(self) -> None:
        """Drop every snapshot and unset the current pointer."""
        self._entries = {}
        self._current_id = None

    # =========================================================================
    # Reads
    # =========================================================================

    def get_snapshot(self, snapshot_id: str) -> Optional[ContentSnapshot]:
        entry = self._entries.get(snapshot_id)
        return entry.snapshot if entry else None

    def has_snapshot(self, snapshot_id: str) -> bool:
        return snapshot_id in self._entries

    def get_current_snapshot(self) -> Optional[ContentSnapshot]:
        if self._current_id is None:
            return None
        return self.get_snapshot(self._current_id)

    def get_all_snapshots(self) -> list[ContentSnapshot]:
        """All snapshots, newest first."""
        return [entry.snapshot for entry in self._ordered(newest_first=True)]

    def get_latest_snapshot(self) -> Optional[ContentSnapshot]:
        snapshots = self.get_all_snapshots()
        return snapshots[0] if snapshots else None

    def get_snapshots_by_source(self, source: SnapshotSource) -> list[ContentSnapshot]:
        try:
            source = SnapshotSource(source)
        except ValueError:
            return []
        return [s for s in self.get_all_snapshots() if s.source == source]

    def get_snapshots_in_range(self, start: datetime, end: datetime) -> list[ContentSnapshot]:
        """Snapshots with start <= timestamp <= end, newest first."""
        start, end = as_naive_utc(start), as_naive_utc(end)
        return [s for s in self.get_all_snapshots() if start <= s.timestamp <= end]

    def compare_snapshots(self, from_id: str, to_id: str) -> Optional[SnapshotDiff]:
        """Diff two stored snapshots; None if either id is unknown."""
        from_snapshot = self.get_snapshot(from_id)
        to_snapshot = self.get_snapshot(to_id)
        if from_snapshot is None or to_snapshot is None:
            return None
        return compare_snapshots(from_snapshot, to_snapshot)

    def compare_with_current(self, snapshot_id: str) -> Optional[SnapshotDiff]:
        """Diff a stored snapshot against the current one."""
        if self._current_id is None:
            return None
        return self.compare_snapshots(snapshot_id, self._current_id)

    # =========================================================================
    # Export / Import
    # =========================================================================

    def export_snapshots(self) -> str:
        """Serialize the collection to a versioned JSON document."""
        document = SnapshotExportDocument(
            version=EXPORT_FORMAT_VERSION,
            exported_at=datetime.utcnow(),
            snapshots=[s.to_export_item() for s in self.get_all_snapshots()],
        )
        return document.model_dump_json(indent=2)

    def import_snapshots(self, data: str) -> int:
        """
        Load snapshots from an export document.

        Entries that fail validation, or whose fingerprint does not match
        their content, are skipped. The collection bound is enforced
        afterwards.

        Returns:
            Number of snapshots imported

        Raises:
            SnapshotFormatError: If the document is not a recognized export
        """
        try:
            raw = json.loads(data)
        except (TypeError, ValueError) as e:
            raise SnapshotFormatError(f"Snapshot export is not valid JSON: {e}") from e

        if not isinstance(raw, dict) or not isinstance(raw.get("snapshots"), list):
            raise SnapshotFormatError("Snapshot export must be an object with a snapshots list")
        version = raw.get("version")
        if version != EXPORT_FORMAT_VERSION:
            raise SnapshotFormatError(f"Unsupported snapshot export version: {version!r}")

        imported = 0
        for position, item in enumerate(raw["snapshots"]):
            try:
                parsed = SnapshotExportItem.model_validate(item)
                snapshot = build_snapshot(
                    parsed.content.html,
                    parsed.content.structure,
                    parsed.content.anchor_ids,
                    source=SnapshotSource(parsed.source),
                    label=parsed.label,
                    word_count=parsed.word_count,
                    timestamp=parsed.timestamp,
                    snapshot_id=parsed.id,
                )
            except (ValidationError, MalformedContentError) as e:
                logger.warning(f"Skipping snapshot #{position} in import: {e}")
                continue

            if snapshot.fingerprint != parsed.fingerprint:
                logger.warning(f"Skipping snapshot {parsed.id}: fingerprint does not match content")
                continue

            self._insert(snapshot)
            imported += 1

        self._enforce_limit()
        logger.info(f"Imported {imported} snapshots ({self.count} retained)")
        return imported

    # =========================================================================
    # Internals
    # =========================================================================

    def _insert(self, snapshot: ContentSnapshot) -> None:
        self._seq += 1
        self._entries[snapshot.id] = _Entry(snapshot=snapshot, seq=self._seq)

    def _ordered(self, newest_first: bool) -> list[_Entry]:
        return sorted(
            self._entries.values(),
            key=lambda e: (e.snapshot.timestamp, e.seq),
            reverse=newest_first,
        )

    def _enforce_limit(self) -> None:
        """Evict oldest-first until the bound holds, sparing current while possible."""
        excess = len(self._entries) - self._max_snapshots
        if excess <= 0:
            return

        victims: list[str] = []
        for entry in self._ordered(newest_first=False):
            if len(victims) == excess:
                break
            if entry.snapshot.id != self._current_id:
                victims.append(entry.snapshot.id)
        if len(victims) < excess and self._current_id is not None:
            victims.append(self._current_id)

        survivors = {k: v for k, v in self._entries.items() if k not in set(victims)}
        current_id = self._current_id if self._current_id in survivors else None
        self._entries, self._current_id = survivors, current_id
        logger.debug(f"Evicted {len(victims)} snapshots over limit {self._max_snapshots}")


@dataclass
class SnapshotStoreRegistry:
    """
    One SnapshotStore per document id, created on first use.

    Replaces a process-wide singleton: callers ask for the store of a
    specific document and reset it explicitly on teardown.
    """

    max_snapshots: Optional[int] = None
    clock: Optional[Callable[[], datetime]] = None
    _stores: dict[str, SnapshotStore] = field(default_factory=dict)

    def get(self, document_id: str) -> SnapshotStore:
        key = str(document_id)
        store = self._stores.get(key)
        if store is None:
            store = SnapshotStore(max_snapshots=self.max_snapshots, clock=self.clock)
            self._stores[key] = store
        return store

    def reset(self, document_id: Optional[str] = None) -> None:
        """Drop one document's store, or every store when no id is given."""
        if document_id is None:
            self._stores.clear()
        else:
            self._stores.pop(str(document_id), None)

    def __contains__(self, document_id: object) -> bool:
        return str(document_id) in self._stores

    def __len__(self) -> int:
        return len(self._stores)


_default_registry = SnapshotStoreRegistry()


def get_snapshot_store(document_id: str) -> SnapshotStore:
    """Store for a document from the process default registry."""
    return _default_registry.get(document_id)


def reset_snapshot_stores(document_id: Optional[str] = None) -> None:
    """Reset one or all stores in the process default registry."""
    _default_registry.reset(document_id)
