"""Writing analytics computed from snapshots.

Pure functions, one per analytics job type. Each returns a JSON-ready dict
of metrics; timestamps are ISO-8601 strings (naive UTC).

Conventions:
  - Ratios divide by zero to 0.0
  - Percentages are clamped to 0-100
  - A writing session is a run of snapshots no more than SESSION_GAP apart
"""

import math
import re
import string
from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Iterable, Optional, Sequence

from .content_converter import (
    count_chapters,
    count_paragraphs,
    count_sentences,
    html_to_plain_text,
    split_sentences,
)
from .snapshot_diff import compare_snapshots, compute_word_diff
from .snapshot_store import ContentSnapshot


WORDS_PER_MINUTE = 250
TOP_WORDS_LIMIT = 20
MAJOR_REVISION_THRESHOLD = 20.0
SESSION_GAP = timedelta(minutes=30)

_PASSIVE_RE = re.compile(r"\b(?:is|are|was|were|be|been|being|am)\b\s+(?:\w+ed|\w+en)\b", re.IGNORECASE)
_ACTION_RE = re.compile(r"\b\w+(?:ed|ing)\b")
_DIALOGUE_RE = re.compile(r"[\"“”‘’][^\"“”‘’]+[\"“”‘’]")
_QUOTE_RE = re.compile(r"[\"“”‘’]")
_VOWEL_GROUP_RE = re.compile(r"[aeiouy]+")
_ANCHOR_SPAN_RE = re.compile(
    r"""<span\b(?=[^>]*data-scene-anchor\s*=\s*["']true["'])[^>]*data-scene-id\s*=\s*["']([^"']+)["'][^>]*>""",
    re.IGNORECASE,
)
_WORD_STRIP = string.punctuation + "“”‘’—–…"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _now() -> str:
    return datetime.utcnow().isoformat()


def _clamp_percentage(value: float) -> float:
    return min(100.0, max(0.0, value))


def _ratio(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator else 0.0


def _chronological(snapshots: Iterable[ContentSnapshot]) -> list[ContentSnapshot]:
    return sorted(snapshots, key=lambda s: s.timestamp)


# =============================================================================
# Text Analysis
# =============================================================================


def estimate_syllables(word: str) -> int:
    """Vowel-group syllable estimate with a silent-e adjustment, at least 1."""
    word = word.lower().strip(_WORD_STRIP)
    if not word:
        return 0
    syllables = len(_VOWEL_GROUP_RE.findall(word))
    if word.endswith("e") and syllables > 1:
        syllables -= 1
    return max(1, syllables)


def flesch_reading_ease(words: Sequence[str], sentence_count: int) -> float:
    """Flesch reading ease, clamped to 0-100."""
    if not words or sentence_count == 0:
        return 0.0
    syllables = sum(estimate_syllables(w) for w in words)
    score = 206.835 - 1.015 * (len(words) / sentence_count) - 84.6 * (syllables / len(words))
    return _clamp_percentage(score)


def word_frequency(words: Iterable[str]) -> Counter:
    """Frequency of lowercased words longer than three characters, numbers excluded."""
    frequency: Counter = Counter()
    for raw in words:
        word = raw.lower().strip(_WORD_STRIP)
        if len(word) > 3 and not word.isdigit():
            frequency[word] += 1
    return frequency


def dialogue_word_count(html: str) -> int:
    """Words inside quotation marks."""
    total = 0
    for fragment in _DIALOGUE_RE.findall(html_to_plain_text(html)):
        total += len(_QUOTE_RE.sub(" ", fragment).split())
    return total


@dataclass(frozen=True)
class WritingPatterns:
    dialogue_percentage: float
    action_percentage: float
    description_percentage: float
    passive_voice_percentage: float


def writing_patterns(html: str, text: str, word_count: int) -> WritingPatterns:
    """
    Split prose into dialogue / action / description shares.

    Dialogue is the share of quoted words. The remaining share is divided
    between action and description by the ratio of sentences containing
    -ed/-ing verbs.
    """
    sentences = split_sentences(text)
    dialogue = _ratio(dialogue_word_count(html), word_count) * 100
    non_dialogue = max(0.0, 100.0 - dialogue)
    action_ratio = _ratio(sum(1 for s in sentences if _ACTION_RE.search(s)), len(sentences))
    action = min(non_dialogue, action_ratio * non_dialogue)
    passive = _ratio(sum(1 for s in sentences if _PASSIVE_RE.search(s)), len(sentences)) * 100

    return WritingPatterns(
        dialogue_percentage=_clamp_percentage(dialogue),
        action_percentage=_clamp_percentage(action),
        description_percentage=_clamp_percentage(non_dialogue - action),
        passive_voice_percentage=_clamp_percentage(passive),
    )


def split_scene_segments(html: str) -> list[tuple[str, str]]:
    """
    Split an HTML body at scene anchors.

    Returns (scene_id, html_segment) pairs in body order; text before the
    first anchor is not attributed to any scene.
    """
    matches = list(_ANCHOR_SPAN_RE.finditer(html or ""))
    segments = []
    for index, match in enumerate(matches):
        end = matches[index + 1].start() if index + 1 < len(matches) else len(html)
        segments.append((match.group(1), html[match.end():end]))
    return segments


# =============================================================================
# Per-job Metrics
# =============================================================================


def analyze_snapshot(snapshot: ContentSnapshot) -> dict[str, Any]:
    """Text, structure, pattern and vocabulary metrics of one snapshot."""
    html = snapshot.content.html
    text = html_to_plain_text(html)
    words = text.split()
    word_count = len(words)
    sentence_count = count_sentences(text)
    paragraph_count = count_paragraphs(html_to_plain_text(html, preserve_paragraphs=True))
    patterns = writing_patterns(html, text, word_count)
    frequency = word_frequency(words)
    scene_count = snapshot.scene_count

    return {
        "word_count": word_count,
        "character_count": len(text),
        "paragraph_count": paragraph_count,
        "sentence_count": sentence_count,
        "average_words_per_sentence": _ratio(word_count, sentence_count),
        "average_words_per_paragraph": _ratio(word_count, paragraph_count),
        "readability_score": flesch_reading_ease(words, sentence_count),
        "reading_time_minutes": word_count / WORDS_PER_MINUTE,
        "scene_count": scene_count,
        "chapter_count": count_chapters(snapshot.content.structure),
        "average_scene_length": _ratio(word_count, scene_count),
        "dialogue_percentage": patterns.dialogue_percentage,
        "action_percentage": patterns.action_percentage,
        "description_percentage": patterns.description_percentage,
        "passive_voice_percentage": patterns.passive_voice_percentage,
        "unique_words": len(frequency),
        "vocabulary_richness": _ratio(len(frequency), word_count),
        "top_words": [{"word": w, "count": c} for w, c in frequency.most_common(TOP_WORDS_LIMIT)],
        "analyzed_at": _now(),
    }


def compare_snapshot_metrics(from_snapshot: ContentSnapshot, to_snapshot: ContentSnapshot) -> dict[str, Any]:
    """Net-change comparison metrics between two snapshots."""
    diff = compare_snapshots(from_snapshot, to_snapshot)
    from_words = len(html_to_plain_text(from_snapshot.content.html).split())
    to_words = len(html_to_plain_text(to_snapshot.content.html).split())
    net_change = to_words - from_words
    change_percentage = _ratio(abs(net_change), from_words) * 100
    elapsed_hours = diff.time_delta_seconds / 3600

    return {
        "words_added": max(0, net_change),
        "words_removed": max(0, -net_change),
        "words_changed": abs(net_change),
        "net_word_change": net_change,
        "word_diff": {
            "additions": diff.word_diff.additions,
            "deletions": diff.word_diff.deletions,
            "unchanged": diff.word_diff.unchanged,
            "total_changes": diff.word_diff.total_changes,
            "change_percentage": diff.word_diff.change_percentage,
        },
        "scenes_added": max(0, to_snapshot.scene_count - from_snapshot.scene_count),
        "scenes_removed": max(0, from_snapshot.scene_count - to_snapshot.scene_count),
        "scenes_modified": min(from_snapshot.scene_count, to_snapshot.scene_count),
        "time_between_snapshots_ms": diff.time_delta_seconds * 1000,
        "writing_velocity": abs(net_change) / elapsed_hours if elapsed_hours > 0 else 0.0,
        "major_revisions": 1 if change_percentage > MAJOR_REVISION_THRESHOLD else 0,
        "minor_edits": 1 if 0 < change_percentage <= MAJOR_REVISION_THRESHOLD else 0,
        "is_identical": diff.is_identical,
        "has_structure_changes": diff.has_structure_changes,
        "summary": diff.summary,
        "from_timestamp": _iso(from_snapshot.timestamp),
        "to_timestamp": _iso(to_snapshot.timestamp),
        "analyzed_at": _now(),
    }


def writing_velocity_metrics(
    snapshots: Iterable[ContentSnapshot],
    start_time: datetime,
    end_time: datetime,
) -> dict[str, Any]:
    """Words-per-hour breakdown over consecutive snapshots within a window."""
    ordered = [s for s in _chronological(snapshots) if start_time <= s.timestamp <= end_time]

    sessions = []
    hourly: dict[int, int] = {}
    total_words = 0
    for previous, current in zip(ordered, ordered[1:]):
        written = max(0, current.word_count - previous.word_count)
        hours = (current.timestamp - previous.timestamp).total_seconds() / 3600
        sessions.append({
            "start_time": _iso(previous.timestamp),
            "end_time": _iso(current.timestamp),
            "words_written": written,
            "words_per_hour": written / hours if hours > 0 else 0.0,
            "duration_minutes": hours * 60,
        })
        total_words += written
        hourly[current.timestamp.hour] = hourly.get(current.timestamp.hour, 0) + written

    total_minutes = (end_time - start_time).total_seconds() / 60
    most_productive = max(hourly, key=lambda h: (hourly[h], -h)) if hourly else 0
    least_productive = min(hourly, key=lambda h: (hourly[h], h)) if hourly else 0

    return {
        "total_words_written": total_words,
        "total_time_minutes": total_minutes,
        "average_words_per_hour": _ratio(total_words, total_minutes) * 60,
        "peak_words_per_hour": max((s["words_per_hour"] for s in sessions), default=0.0),
        "sessions": sessions,
        "most_productive_hour_of_day": most_productive,
        "least_productive_hour_of_day": least_productive,
        "average_session_length": _ratio(sum(s["duration_minutes"] for s in sessions), len(sessions)),
        "analyzed_at": _now(),
    }


def _balance_score(values: Sequence[float]) -> float:
    """100 minus the coefficient of variation as a percentage, floored at 0."""
    if not values:
        return 0.0
    mean = sum(values) / len(values)
    if mean <= 0:
        return 0.0
    std_dev = math.sqrt(sum((v - mean) ** 2 for v in values) / len(values))
    return max(0.0, 100.0 - (std_dev / mean) * 100)


def analyze_structure(snapshot: ContentSnapshot) -> dict[str, Any]:
    """Chapter/scene breakdown with pacing and balance scores."""
    structure = snapshot.content.structure
    if not isinstance(structure, list):
        structure = []

    scenes = []
    scene_words: dict[str, int] = {}
    for position, (scene_id, segment) in enumerate(split_scene_segments(snapshot.content.html)):
        text = html_to_plain_text(segment)
        word_count = len(text.split())
        patterns = writing_patterns(segment, text, word_count)
        scene_words[scene_id] = word_count
        scenes.append({
            "id": scene_id,
            "word_count": word_count,
            "position": position,
            "has_dialogue": patterns.dialogue_percentage > 0,
            "has_action": patterns.action_percentage > 0,
            "has_description": patterns.description_percentage > 0,
        })

    chapters = []
    for position, chapter in enumerate(structure):
        chapter = chapter if isinstance(chapter, dict) else {}
        chapter_scenes = chapter.get("scenes") if isinstance(chapter.get("scenes"), list) else []
        scene_ids = [s.get("id") for s in chapter_scenes if isinstance(s, dict)]
        chapters.append({
            "id": str(chapter.get("id") or f"chapter-{position}"),
            "scene_count": len(chapter_scenes),
            "word_count": sum(scene_words.get(sid, 0) for sid in scene_ids if sid),
            "position": position,
        })

    total_scenes = sum(c["scene_count"] for c in chapters) or len(scenes)
    return {
        "total_scenes": total_scenes,
        "total_chapters": len(chapters),
        "average_scenes_per_chapter": _ratio(total_scenes, len(chapters)),
        "scenes": scenes,
        "chapters": chapters,
        "pacing_score": _balance_score([s["word_count"] for s in scenes]),
        "structure_balance": _balance_score([c["word_count"] for c in chapters]),
        "analyzed_at": _now(),
    }


# =============================================================================
# Sessions and Summaries
# =============================================================================


@dataclass
class WritingSession:
    """
    A run of snapshots no more than SESSION_GAP apart.

    Attributes:
        snapshots: Member snapshots in timestamp order
        words_written: Sum of positive word-count deltas inside the run
        words_removed: Sum of negative word-count deltas inside the run
    """

    snapshots: list[ContentSnapshot]
    words_written: int = 0
    words_removed: int = 0

    @property
    def start(self) -> datetime:
        return self.snapshots[0].timestamp

    @property
    def end(self) -> datetime:
        return self.snapshots[-1].timestamp

    @property
    def duration_minutes(self) -> float:
        return (self.end - self.start).total_seconds() / 60


def group_sessions(snapshots: Iterable[ContentSnapshot], gap: timedelta = SESSION_GAP) -> list[WritingSession]:
    """Group snapshots into writing sessions by time gap."""
    sessions: list[WritingSession] = []
    for snapshot in _chronological(snapshots):
        if sessions and snapshot.timestamp - sessions[-1].end <= gap:
            session = sessions[-1]
            delta = snapshot.word_count - session.snapshots[-1].word_count
            session.words_written += max(0, delta)
            session.words_removed += max(0, -delta)
            session.snapshots.append(snapshot)
        else:
            sessions.append(WritingSession(snapshots=[snapshot]))
    return sessions


def classify_session(additions: int, deletions: int) -> str:
    """creation when changes are mostly additions, revision when mostly removals or rewrites."""
    total = additions + deletions
    if total == 0:
        return "mixed"
    share = additions / total
    if share >= 0.8:
        return "creation"
    if share <= 0.5:
        return "revision"
    return "mixed"


def session_summary(session_id: str, snapshots: Sequence[ContentSnapshot]) -> dict[str, Any]:
    """Summary of an explicit list of snapshots forming one session."""
    ordered = _chronological(snapshots)
    if not ordered:
        raise ValueError("Session summary needs at least one snapshot")

    first, last = ordered[0], ordered[-1]
    written = additions = deletions = 0
    scenes_added = scenes_removed = 0
    for previous, current in zip(ordered, ordered[1:]):
        written += max(0, current.word_count - previous.word_count)
        stats = compute_word_diff(
            html_to_plain_text(previous.content.html),
            html_to_plain_text(current.content.html),
        )
        additions += stats.additions
        deletions += stats.deletions
        scene_delta = current.scene_count - previous.scene_count
        scenes_added += max(0, scene_delta)
        scenes_removed += max(0, -scene_delta)

    duration_minutes = (last.timestamp - first.timestamp).total_seconds() / 60
    patterns = analyze_snapshot(last)
    focus = max(
        ("dialogue", "action", "description"),
        key=lambda area: patterns[f"{area}_percentage"],
    )

    return {
        "session_id": session_id,
        "start_time": _iso(first.timestamp),
        "end_time": _iso(last.timestamp),
        "duration_minutes": duration_minutes,
        "total_words_written": written,
        "words_per_hour": _ratio(written, duration_minutes) * 60,
        "snapshots_created": len(ordered),
        "scenes_added": scenes_added,
        "scenes_modified": min(first.scene_count, last.scene_count),
        "scenes_deleted": scenes_removed,
        "session_type": classify_session(additions, deletions),
        "focus_areas": [focus] if patterns["word_count"] else [],
        "analyzed_at": _now(),
    }


def _day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime(day.year, day.month, day.day)
    return start, start + timedelta(days=1)


def _day_totals(snapshots: Sequence[ContentSnapshot], day: date) -> tuple[list[WritingSession], int, float]:
    start, end = _day_bounds(day)
    sessions = group_sessions(s for s in snapshots if start <= s.timestamp < end)
    words = sum(s.words_written for s in sessions)
    minutes = sum(s.duration_minutes for s in sessions)
    return sessions, words, minutes


def daily_summary(
    snapshots: Sequence[ContentSnapshot],
    day: date,
    daily_goal_words: Optional[int] = None,
) -> dict[str, Any]:
    """Writing totals for one UTC calendar day."""
    sessions, words, minutes = _day_totals(snapshots, day)
    metrics = {
        "date": day.isoformat(),
        "total_words_written": words,
        "total_time_minutes": minutes,
        "sessions_count": len(sessions),
        "average_words_per_hour": _ratio(words, minutes) * 60,
        "longest_session": max((s.duration_minutes for s in sessions), default=0.0),
        "most_productive_session": max((s.words_written for s in sessions), default=0),
        "daily_goal_words": daily_goal_words,
        "goal_progress": None,
        "analyzed_at": _now(),
    }
    if daily_goal_words:
        metrics["goal_progress"] = min(100.0, words / daily_goal_words * 100)
    return metrics


def weekly_summary(snapshots: Sequence[ContentSnapshot], start_date: date, end_date: date) -> dict[str, Any]:
    """Per-day breakdown, streak and most productive day over an inclusive date range."""
    if end_date < start_date:
        raise ValueError(f"end_date {end_date} is before start_date {start_date}")

    daily = []
    total_words = total_sessions = 0
    total_minutes = 0.0
    streak = best_streak = 0
    day = start_date
    while day <= end_date:
        sessions, words, minutes = _day_totals(snapshots, day)
        daily.append({"date": day.isoformat(), "words_written": words, "time_minutes": minutes})
        total_words += words
        total_minutes += minutes
        total_sessions += len(sessions)
        streak = streak + 1 if words > 0 else 0
        best_streak = max(best_streak, streak)
        day += timedelta(days=1)

    active = [d for d in daily if d["words_written"] > 0]
    most_productive = max(active, key=lambda d: d["words_written"])["date"] if active else None

    return {
        "start_date": start_date.isoformat(),
        "end_date": end_date.isoformat(),
        "total_words_written": total_words,
        "total_time_minutes": total_minutes,
        "days_active": len(active),
        "sessions_count": total_sessions,
        "average_words_per_day": _ratio(total_words, len(daily)),
        "daily_metrics": daily,
        "writing_streak": best_streak,
        "most_productive_day": most_productive,
        "analyzed_at": _now(),
    }
