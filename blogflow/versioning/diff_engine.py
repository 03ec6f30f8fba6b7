"""
Field-level and textual diffs between post versions.

``DiffEngine`` compares the tracked fields of two versions (or of a
version and a partial draft), builds the ``Change`` list recorded on a
new version, and renders a line/word diff of the markdown content using
``difflib``'s longest-matching-subsequence matcher.
"""

import difflib
import logging
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Union

from blogflow.versioning.models import (
    TRACKED_FIELDS,
    Change,
    ChangeType,
    TextDiff,
    Version,
    VersionDiff,
)
from blogflow.utils import utc_now

logger = logging.getLogger(__name__)

FieldSource = Union[Version, Mapping[str, Any]]

_MISSING = object()


def normalize_value(field_name: str, value: Any) -> Any:
    """Normalize a field value for comparison and storage.

    Tags compare as an ordered list of strings; every other tracked field
    is text.
    """
    if value is None:
        return None
    if field_name == "tags":
        return [str(tag) for tag in value]
    return value


def _is_blank(value: Any) -> bool:
    return value is None or value == "" or value == []


class DiffEngine:
    """Computes change sets between versions.

    Usage::

        engine = DiffEngine()
        diff = engine.diff(v1, v2)
        if "content" in diff.modified:
            print("\\n".join(diff.text_diff.unified))
    """

    def __init__(self, context_lines: int = 3) -> None:
        self.context_lines = context_lines

    # ================================================================
    # VERSION COMPARISON
    # ================================================================

    def diff(self, version_a: FieldSource, version_b: FieldSource) -> VersionDiff:
        """Compare the tracked fields of two versions.

        A field present only in *version_b* is "added", present only in
        *version_a* is "removed", present in both but unequal is
        "modified".  Full ``Version`` objects always carry all four
        fields, so for them any difference is a modification.

        Args:
            version_a: The older side (``Version`` or partial field map).
            version_b: The newer side (``Version`` or partial field map).

        Returns:
            A ``VersionDiff``; ``text_diff`` is set when ``content``
            differs.
        """
        a = self._field_map(version_a)
        b = self._field_map(version_b)
        result = VersionDiff()

        for name in TRACKED_FIELDS:
            a_val = a.get(name, _MISSING)
            b_val = b.get(name, _MISSING)
            a_present = a_val is not _MISSING and a_val is not None
            b_present = b_val is not _MISSING and b_val is not None

            if not a_present and not b_present:
                continue
            if b_present and not a_present:
                result.added.append(name)
            elif a_present and not b_present:
                result.removed.append(name)
            elif normalize_value(name, a_val) != normalize_value(name, b_val):
                result.modified.append(name)

        if "content" in result.modified:
            result.text_diff = self.text_diff(a["content"], b["content"])

        return result

    # ================================================================
    # CHANGE LIST
    # ================================================================

    def compute_changes(
        self,
        previous: Optional[Version],
        fields: Mapping[str, Any],
        author_id: str,
        timestamp: Optional[datetime] = None,
    ) -> List[Change]:
        """Build the change list for a new version.

        The first version of a post records a single ``insert`` change on
        the synthetic ``initial`` field.  Later versions record one change
        per tracked field whose supplied value differs from *previous*:
        ``insert`` when the field was blank before, ``delete`` when it is
        blank now, ``update`` otherwise.  Fields omitted from *fields* (or
        ``None``) are unchanged.
        """
        timestamp = timestamp or utc_now()

        if previous is None:
            return [
                Change(
                    type=ChangeType.INSERT,
                    field="initial",
                    new_value="Initial version",
                    author_id=author_id,
                    timestamp=timestamp,
                )
            ]

        prior = previous.fields()
        changes: List[Change] = []
        for name in TRACKED_FIELDS:
            if name not in fields or fields[name] is None:
                continue
            new_val = normalize_value(name, fields[name])
            old_val = prior[name]
            if new_val == old_val:
                continue

            if _is_blank(old_val):
                change_type = ChangeType.INSERT
            elif _is_blank(new_val):
                change_type = ChangeType.DELETE
            else:
                change_type = ChangeType.UPDATE

            changes.append(
                Change(
                    type=change_type,
                    field=name,
                    old_value=old_val,
                    new_value=new_val,
                    author_id=author_id,
                    timestamp=timestamp,
                )
            )
        return changes

    # ================================================================
    # TEXT DIFF
    # ================================================================

    def text_diff(self, old_text: str, new_text: str) -> TextDiff:
        """Line and word level diff of two markdown documents."""
        old_text = old_text or ""
        new_text = new_text or ""

        unified = list(
            difflib.unified_diff(
                old_text.splitlines(),
                new_text.splitlines(),
                fromfile="before",
                tofile="after",
                n=self.context_lines,
                lineterm="",
            )
        )
        added_lines = sum(
            1 for line in unified if line.startswith("+") and not line.startswith("+++")
        )
        removed_lines = sum(
            1 for line in unified if line.startswith("-") and not line.startswith("---")
        )

        old_words = old_text.split()
        new_words = new_text.split()
        matcher = difflib.SequenceMatcher(None, old_words, new_words, autojunk=False)

        operations: List[Dict[str, str]] = []
        added_words = 0
        removed_words = 0
        for tag, i1, i2, j1, j2 in matcher.get_opcodes():
            operations.append({
                "op": tag,
                "old": " ".join(old_words[i1:i2]),
                "new": " ".join(new_words[j1:j2]),
            })
            if tag in ("replace", "delete"):
                removed_words += i2 - i1
            if tag in ("replace", "insert"):
                added_words += j2 - j1

        return TextDiff(
            unified=unified,
            operations=operations,
            added_lines=added_lines,
            removed_lines=removed_lines,
            added_words=added_words,
            removed_words=removed_words,
        )

    # ================================================================
    # INTERNAL HELPERS
    # ================================================================

    @staticmethod
    def _field_map(source: FieldSource) -> Dict[str, Any]:
        if isinstance(source, Version):
            return source.fields()
        return {name: source[name] for name in TRACKED_FIELDS if name in source}


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "DiffEngine",
    "normalize_value",
]
