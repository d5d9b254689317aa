"""Content fingerprinting.

A fingerprint is the SHA-256 hex digest of a canonical JSON serialization of
a document's editable content: the HTML body, the outline structure and the
set of scene anchor ids. Anchor ids are de-duplicated and sorted so that the
same anchor set always produces the same token regardless of discovery
order. Object keys are sorted and separators fixed so that serialization is
byte-stable across processes.
"""

import hashlib
import json
from typing import Any, Iterable, Optional


class MalformedContentError(ValueError):
    """Content passed to the pipeline is structurally invalid."""


def normalize_structure(structure: Any) -> Any:
    """Treat a missing/empty outline as an empty chapter list."""
    if structure is None or (isinstance(structure, (list, dict)) and not structure):
        return []
    if not isinstance(structure, (list, dict)):
        raise MalformedContentError(
            f"Structure must be a list of chapters, got {type(structure).__name__}"
        )
    return structure


def normalize_anchor_ids(anchor_ids: Optional[Iterable[str]]) -> list[str]:
    """De-duplicate and sort anchor ids."""
    if anchor_ids is None:
        return []
    if isinstance(anchor_ids, (str, bytes)):
        raise MalformedContentError("Anchor ids must be an iterable of strings, not a string")
    ids = list(anchor_ids)
    for anchor_id in ids:
        if not isinstance(anchor_id, str):
            raise MalformedContentError(
                f"Anchor id must be a string, got {type(anchor_id).__name__}"
            )
    return sorted(set(ids))


def canonical_payload(
    html: Optional[str],
    structure: Any,
    anchor_ids: Optional[Iterable[str]],
) -> str:
    """Serialize content into its canonical JSON form."""
    if html is not None and not isinstance(html, str):
        raise MalformedContentError(f"HTML body must be a string, got {type(html).__name__}")

    payload = {
        "anchorIds": normalize_anchor_ids(anchor_ids),
        "html": html or "",
        "structure": normalize_structure(structure),
    }
    try:
        return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise MalformedContentError(f"Content is not JSON-serializable: {e}") from e


def compute_fingerprint(
    html: Optional[str],
    structure: Any = None,
    anchor_ids: Optional[Iterable[str]] = None,
) -> str:
    """
    Compute the content identity token.

    Args:
        html: Serialized rich-text body
        structure: Ordered outline (chapters containing scenes)
        anchor_ids: Scene anchor ids referenced from the body, any order

    Returns:
        64-character lowercase hex SHA-256 digest

    Raises:
        MalformedContentError: If any part of the content has the wrong shape
    """
    serialized = canonical_payload(html, structure, anchor_ids)
    try:
        encoded = serialized.encode("utf-8")
    except UnicodeEncodeError as e:
        raise MalformedContentError(f"Content is not valid UTF-8 text: {e.reason}") from e
    return hashlib.sha256(encoded).hexdigest()
