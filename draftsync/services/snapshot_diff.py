"""Snapshot diff engine.

Word-level diffing runs over the plain-text projection of each snapshot's
HTML body using difflib's SequenceMatcher on whitespace tokens. Equal
fingerprints short-circuit to an identical result with every delta zeroed.

All ratios divide by zero to 0.0, never NaN.
"""

import difflib
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Iterable, Optional

from .content_converter import html_to_plain_text

if TYPE_CHECKING:
    from .snapshot_store import ContentSnapshot


SECONDS_PER_HOUR = 3600.0
SECONDS_PER_DAY = 86400.0
DEFAULT_SIGNIFICANCE_THRESHOLD = 5.0


@dataclass(frozen=True)
class DiffStats:
    """
    Word-level change counts between two texts.

    Attributes:
        additions: Words present only in the newer text
        deletions: Words present only in the older text
        unchanged: Words common to both
        total_changes: additions + deletions
        change_percentage: total_changes over all counted words, 0-100
    """

    additions: int = 0
    deletions: int = 0
    unchanged: int = 0
    total_changes: int = 0
    change_percentage: float = 0.0

    @classmethod
    def empty(cls) -> "DiffStats":
        return cls()


def compute_word_diff(old_text: str, new_text: str) -> DiffStats:
    """Diff two plain texts word by word."""
    old_words = old_text.split()
    new_words = new_text.split()

    additions = deletions = unchanged = 0
    matcher = difflib.SequenceMatcher(a=old_words, b=new_words, autojunk=False)
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            unchanged += i2 - i1
        elif tag == "insert":
            additions += j2 - j1
        elif tag == "delete":
            deletions += i2 - i1
        else:  # replace
            deletions += i2 - i1
            additions += j2 - j1

    total_words = additions + deletions + unchanged
    total_changes = additions + deletions
    return DiffStats(
        additions=additions,
        deletions=deletions,
        unchanged=unchanged,
        total_changes=total_changes,
        change_percentage=(total_changes / total_words) * 100 if total_words > 0 else 0.0,
    )


def compare_html(old_html: Optional[str], new_html: Optional[str]) -> DiffStats:
    """Word diff of two HTML bodies after projecting them to plain text."""
    return compute_word_diff(html_to_plain_text(old_html), html_to_plain_text(new_html))


@dataclass(frozen=True)
class SnapshotSide:
    """Metadata of one side of a comparison."""

    id: str
    timestamp: datetime
    word_count: int
    scene_count: int
    fingerprint: str


@dataclass(frozen=True)
class SnapshotDiff:
    """Result of comparing snapshot `from_snapshot` to `to_snapshot`."""

    word_diff: DiffStats
    from_snapshot: SnapshotSide
    to_snapshot: SnapshotSide
    time_delta_seconds: float
    is_identical: bool
    has_content_changes: bool
    has_structure_changes: bool
    word_count_delta: int
    scene_count_delta: int

    @property
    def writing_velocity(self) -> float:
        """Absolute net word change per elapsed hour."""
        if self.time_delta_seconds <= 0:
            return 0.0
        return abs(self.word_count_delta) / (self.time_delta_seconds / SECONDS_PER_HOUR)

    @property
    def summary(self) -> str:
        return get_change_summary(self)

    def to_dict(self) -> dict:
        return {
            "from_id": self.from_snapshot.id,
            "to_id": self.to_snapshot.id,
            "is_identical": self.is_identical,
            "has_content_changes": self.has_content_changes,
            "has_structure_changes": self.has_structure_changes,
            "word_count_delta": self.word_count_delta,
            "scene_count_delta": self.scene_count_delta,
            "time_delta_seconds": self.time_delta_seconds,
            "writing_velocity": self.writing_velocity,
            "word_diff": {
                "additions": self.word_diff.additions,
                "deletions": self.word_diff.deletions,
                "unchanged": self.word_diff.unchanged,
                "total_changes": self.word_diff.total_changes,
                "change_percentage": self.word_diff.change_percentage,
            },
            "summary": self.summary,
        }


def _side(snapshot: "ContentSnapshot") -> SnapshotSide:
    return SnapshotSide(
        id=snapshot.id,
        timestamp=snapshot.timestamp,
        word_count=snapshot.word_count,
        scene_count=snapshot.scene_count,
        fingerprint=snapshot.fingerprint,
    )


def compare_snapshots(from_snapshot: "ContentSnapshot", to_snapshot: "ContentSnapshot") -> SnapshotDiff:
    """
    Compare two snapshots.

    Equal fingerprints mean equal content, so the result reports no word,
    scene or structure differences even if stored metadata disagrees.
    """
    time_delta = (to_snapshot.timestamp - from_snapshot.timestamp).total_seconds()

    if from_snapshot.fingerprint == to_snapshot.fingerprint:
        unchanged = len(html_to_plain_text(to_snapshot.content.html).split())
        return SnapshotDiff(
            word_diff=DiffStats(unchanged=unchanged),
            from_snapshot=_side(from_snapshot),
            to_snapshot=_side(to_snapshot),
            time_delta_seconds=time_delta,
            is_identical=True,
            has_content_changes=False,
            has_structure_changes=False,
            word_count_delta=0,
            scene_count_delta=0,
        )

    word_diff = compare_html(from_snapshot.content.html, to_snapshot.content.html)
    return SnapshotDiff(
        word_diff=word_diff,
        from_snapshot=_side(from_snapshot),
        to_snapshot=_side(to_snapshot),
        time_delta_seconds=time_delta,
        is_identical=False,
        has_content_changes=word_diff.total_changes > 0,
        has_structure_changes=from_snapshot.content.structure_json != to_snapshot.content.structure_json,
        word_count_delta=to_snapshot.word_count - from_snapshot.word_count,
        scene_count_delta=to_snapshot.scene_count - from_snapshot.scene_count,
    )


def _signed(value: int, unit: str) -> str:
    return f"{'+' if value > 0 else ''}{value} {unit}"


def get_change_summary(diff: SnapshotDiff) -> str:
    """Human-readable summary built from the non-zero parts of a diff."""
    if diff.is_identical:
        return "No changes detected"

    parts = []
    if diff.word_count_delta != 0:
        parts.append(_signed(diff.word_count_delta, "words"))
    if diff.scene_count_delta != 0:
        parts.append(_signed(diff.scene_count_delta, "scenes"))
    if diff.has_structure_changes:
        parts.append("structure modified")

    if parts:
        return ", ".join(parts)
    if diff.word_diff.total_changes > 0:
        return f"{diff.word_diff.change_percentage:.1f}% changed"
    return "No changes detected"


def calculate_writing_velocity(from_snapshot: "ContentSnapshot", to_snapshot: "ContentSnapshot") -> float:
    """Words per hour between two snapshots, by absolute net word change."""
    elapsed = (to_snapshot.timestamp - from_snapshot.timestamp).total_seconds()
    if elapsed <= 0:
        return 0.0
    return abs(to_snapshot.word_count - from_snapshot.word_count) / (elapsed / SECONDS_PER_HOUR)


@dataclass(frozen=True)
class SnapshotStatistics:
    """Aggregate counts over a set of snapshots."""

    total_snapshots: int
    time_range: Optional[tuple[datetime, datetime]]
    total_words: int
    average_word_count: float
    total_scenes: int
    average_scene_count: float
    growth_rate: float  # words/day

    @classmethod
    def empty(cls) -> "SnapshotStatistics":
        return cls(
            total_snapshots=0,
            time_range=None,
            total_words=0,
            average_word_count=0.0,
            total_scenes=0,
            average_scene_count=0.0,
            growth_rate=0.0,
        )


def _chronological(snapshots: Iterable["ContentSnapshot"]) -> list["ContentSnapshot"]:
    # sorted() is stable, so equal timestamps keep their given order
    return sorted(snapshots, key=lambda s: s.timestamp)


def get_snapshot_statistics(snapshots: Iterable["ContentSnapshot"]) -> SnapshotStatistics:
    """Totals, averages and word growth rate between the earliest and latest snapshot."""
    ordered = _chronological(snapshots)
    if not ordered:
        return SnapshotStatistics.empty()

    first, last = ordered[0], ordered[-1]
    total_words = sum(s.word_count for s in ordered)
    total_scenes = sum(s.scene_count for s in ordered)
    days = (last.timestamp - first.timestamp).total_seconds() / SECONDS_PER_DAY

    return SnapshotStatistics(
        total_snapshots=len(ordered),
        time_range=(first.timestamp, last.timestamp),
        total_words=total_words,
        average_word_count=total_words / len(ordered),
        total_scenes=total_scenes,
        average_scene_count=total_scenes / len(ordered),
        growth_rate=(last.word_count - first.word_count) / days if days > 0 else 0.0,
    )


@dataclass(frozen=True)
class SignificantSnapshot:
    snapshot: "ContentSnapshot"
    change_percentage: float


def find_significant_snapshots(
    snapshots: Iterable["ContentSnapshot"],
    threshold: float = DEFAULT_SIGNIFICANCE_THRESHOLD,
) -> list[SignificantSnapshot]:
    """
    Flag snapshots whose word diff from their predecessor reaches `threshold` percent.

    Snapshots are scanned in timestamp order; the earliest one has no
    predecessor and is never flagged.
    """
    ordered = _chronological(snapshots)
    significant = []
    for previous, current in zip(ordered, ordered[1:]):
        diff = compare_snapshots(previous, current)
        if diff.word_diff.change_percentage >= threshold:
            significant.append(
                SignificantSnapshot(snapshot=current, change_percentage=diff.word_diff.change_percentage)
            )
    return significant
