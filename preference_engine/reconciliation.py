"""Suggestion reconciliation engine.

Takes an AI-proposed batch of preference changes and the user's current
ACTIVE values, and returns the batch corrected against ground truth:

- unknown slugs, missing fields, duplicate slugs and no-op updates are moved
  to ``filtered`` with a machine-readable reason
- ``operation`` is forced to CREATE/UPDATE according to stored state
- ``old_value`` is replaced by the stored value (or cleared for CREATE)

Records are never mutated; corrected copies are produced with
``dataclasses.replace``. One bad record never aborts the batch.
"""

import enum
import logging
import math
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, Mapping

from .catalog import get_definition

logger = logging.getLogger(__name__)


class _Missing:
    """Marker for a field the AI payload did not include at all."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


class Operation(str, enum.Enum):
    """Kind of change a suggestion proposes."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"


class FilterReason(str, enum.Enum):
    """Why a suggestion was dropped from the actionable list."""

    MISSING_FIELDS = "MISSING_FIELDS"
    DUPLICATE_KEY = "DUPLICATE_KEY"
    NO_CHANGE = "NO_CHANGE"
    UNKNOWN_SLUG = "UNKNOWN_SLUG"


@dataclass(frozen=True)
class SourceMeta:
    """Where in the source document a suggestion came from."""

    page: float | None = None
    line: float | None = None
    filename: str | None = None

    def to_dict(self) -> dict:
        return {"page": self.page, "line": self.line, "filename": self.filename}


@dataclass(frozen=True)
class Suggestion:
    """A proposed preference change. Transient; never persisted as-is."""

    id: str
    slug: str
    operation: Operation
    new_value: Any = MISSING
    old_value: Any = None
    confidence: float = 0.0
    source_snippet: str = ""
    source_meta: SourceMeta | None = None
    was_corrected: bool = False
    category: str | None = None
    description: str | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "slug": self.slug,
            "operation": self.operation.value,
            "old_value": self.old_value,
            "new_value": None if self.new_value is MISSING else self.new_value,
            "confidence": self.confidence,
            "source_snippet": self.source_snippet,
            "source_meta": self.source_meta.to_dict() if self.source_meta else None,
            "was_corrected": self.was_corrected,
            "category": self.category,
            "description": self.description,
        }


@dataclass(frozen=True, kw_only=True)
class FilteredSuggestion(Suggestion):
    """A suggestion that was dropped, with the reason why."""

    filter_reason: FilterReason
    filter_details: str | None = None

    @classmethod
    def from_suggestion(
        cls, suggestion: Suggestion, reason: FilterReason, details: str | None = None
    ) -> "FilteredSuggestion":
        values = {name: getattr(suggestion, name) for name in Suggestion.__dataclass_fields__}
        return cls(**values, filter_reason=reason, filter_details=details)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["filter_reason"] = self.filter_reason.value
        data["filter_details"] = self.filter_details
        return data


@dataclass
class ReconciliationResult:
    """Output of one reconciliation pass."""

    validated: list[Suggestion] = field(default_factory=list)
    filtered: list[FilteredSuggestion] = field(default_factory=list)

    @property
    def filtered_count(self) -> int:
        return len(self.filtered)


# =============================================================================
# Structural equality
# =============================================================================


def json_equal(a: Any, b: Any) -> bool:
    """Deep equality for JSON-shaped values.

    Object key order is ignored. Unlike ``==``, booleans never equal numbers
    (``True != 1``), matching JSON semantics.
    """
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b

    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        if isinstance(a, float) and math.isnan(a):
            return False
        return a == b

    if isinstance(a, dict) and isinstance(b, dict):
        if a.keys() != b.keys():
            return False
        return all(json_equal(a[key], b[key]) for key in a)

    if isinstance(a, (list, tuple)) and isinstance(b, (list, tuple)):
        if len(a) != len(b):
            return False
        return all(json_equal(x, y) for x, y in zip(a, b))

    if a is None or b is None:
        return a is b

    if type(a) is not type(b):
        return False
    return a == b


# =============================================================================
# Reconciliation
# =============================================================================


def correct_against_snapshot(
    suggestion: Suggestion, snapshot: Mapping[str, Any]
) -> Suggestion:
    """Return a copy of ``suggestion`` with operation and old_value fixed from stored state.

    ``was_corrected`` is True on the copy when anything had to change.
    """
    exists_in_db = suggestion.slug in snapshot
    expected = Operation.UPDATE if exists_in_db else Operation.CREATE
    changes: dict[str, Any] = {}

    if suggestion.operation != expected:
        logger.warning(
            f"Corrected operation for {suggestion.slug}: AI said "
            f"{suggestion.operation.value}, but stored state says {expected.value}"
        )
        changes["operation"] = expected

    if exists_in_db:
        actual = snapshot[suggestion.slug]
        if not json_equal(actual, suggestion.old_value):
            logger.warning(
                f"Corrected old_value for {suggestion.slug}: AI said "
                f"{suggestion.old_value!r}, actual is {actual!r}"
            )
            changes["old_value"] = actual
    elif suggestion.old_value is not None:
        # CREATE must not carry an old value
        logger.warning(
            f"Corrected old_value for {suggestion.slug}: removed old_value for CREATE operation"
        )
        changes["old_value"] = None

    return replace(suggestion, **changes, was_corrected=bool(changes))


def reconcile_suggestions(
    suggestions: Iterable[Suggestion], snapshot: Mapping[str, Any]
) -> ReconciliationResult:
    """Validate and correct an AI suggestion batch against current ACTIVE values.

    Args:
        suggestions: Candidate changes, in the order the AI produced them.
        snapshot: ``slug -> current ACTIVE value`` for the target user/location.

    Returns:
        ReconciliationResult with order-preserving ``validated`` and ``filtered`` lists.
    """
    result = ReconciliationResult()
    seen_slugs: set[str] = set()

    for suggestion in suggestions:
        definition = get_definition(suggestion.slug) if suggestion.slug else None

        if suggestion.slug and definition is None:
            logger.warning(f'Filtered suggestion: unknown slug "{suggestion.slug}"')
            result.filtered.append(FilteredSuggestion.from_suggestion(
                suggestion,
                FilterReason.UNKNOWN_SLUG,
                f'Slug "{suggestion.slug}" is not in the catalog',
            ))
            continue

        if not suggestion.slug or suggestion.new_value is MISSING:
            details = f"slug: {suggestion.slug or None}, new_value: {suggestion.new_value!r}"
            logger.warning(f"Filtered suggestion: missing required field(s) - {details}")
            result.filtered.append(FilteredSuggestion.from_suggestion(
                suggestion, FilterReason.MISSING_FIELDS, details
            ))
            continue

        if suggestion.slug in seen_slugs:
            logger.warning(f"Filtered suggestion: duplicate slug {suggestion.slug}")
            result.filtered.append(FilteredSuggestion.from_suggestion(
                suggestion,
                FilterReason.DUPLICATE_KEY,
                f"First occurrence of {suggestion.slug} was already added",
            ))
            continue
        seen_slugs.add(suggestion.slug)

        corrected = correct_against_snapshot(suggestion, snapshot)

        if suggestion.slug in snapshot and json_equal(snapshot[suggestion.slug], corrected.new_value):
            logger.warning(
                f"Filtered suggestion: {suggestion.slug} new_value matches existing value (no change)"
            )
            result.filtered.append(FilteredSuggestion.from_suggestion(
                corrected,
                FilterReason.NO_CHANGE,
                f"Value {corrected.new_value!r} already exists",
            ))
            continue

        result.validated.append(replace(
            corrected,
            category=definition.category,
            description=definition.description,
        ))

    logger.info(
        f"Validation complete: {len(result.validated)} valid suggestions, "
        f"{result.filtered_count} filtered"
    )
    return result
