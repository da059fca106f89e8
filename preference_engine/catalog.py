"""Preference catalog: the code-first registry of valid preference slugs.

Every preference a user can hold is declared here with its value type and
scope. Unknown slugs are rejected everywhere, so an AI model can never invent
new preference keys. The registry is built once at import time and exposed
read-only, which makes every function in this module safe to call from any
thread without locking.
"""

import enum
import math
import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Union

from .errors import ValidationError


class ValueType(str, enum.Enum):
    """Shape a preference value must have."""

    STRING = "string"
    BOOLEAN = "boolean"
    ENUM = "enum"
    ARRAY = "array"


class Scope(str, enum.Enum):
    """Whether a preference is global to the user or tied to a location."""

    GLOBAL = "global"
    LOCATION = "location"


@dataclass(frozen=True)
class CatalogEntry:
    """Definition of one preference type."""

    slug: str
    category: str  # UI grouping only
    description: str  # LLM-facing meaning and how to apply it
    value_type: ValueType
    scope: Scope = Scope.GLOBAL
    options: tuple[str, ...] | None = None  # enum only
    is_sensitive: bool = False

    def to_schema(self) -> dict:
        """Export for the AI prompt's list of valid slugs."""
        return {
            "slug": self.slug,
            "category": self.category,
            "description": self.description,
            "valueType": self.value_type.value,
            "options": list(self.options) if self.options is not None else None,
        }


@dataclass(frozen=True)
class CheckResult:
    """Outcome of a validation check."""

    valid: bool
    error: str | None = None


OK = CheckResult(valid=True)

# Format: category.key or category.sub_key (lowercase, dots, underscores, digits)
SLUG_PATTERN = re.compile(r"^[a-z]+(\.[a-z0-9_]+)+$")


_ENTRIES = (
    CatalogEntry(
        slug="system.response_tone",
        category="system",
        description="The personality and formality level the AI should use when responding.",
        value_type=ValueType.ENUM,
        options=("casual", "professional", "concise", "enthusiastic"),
    ),
    CatalogEntry(
        slug="system.response_length",
        category="system",
        description=(
            "Preferred length of AI responses - brief for quick answers, "
            "detailed for thorough explanations."
        ),
        value_type=ValueType.ENUM,
        options=("brief", "moderate", "detailed"),
    ),
    CatalogEntry(
        slug="food.dietary_restrictions",
        category="food",
        description=(
            "Food allergies, intolerances, dislikes, or diet plans the user follows "
            "(e.g., vegetarian, vegan, gluten-free, kosher, halal)."
        ),
        value_type=ValueType.ARRAY,
    ),
    CatalogEntry(
        slug="food.cuisine_preferences",
        category="food",
        description="Types of cuisine the user enjoys or prefers (e.g., Italian, Japanese, Mexican).",
        value_type=ValueType.ARRAY,
    ),
    CatalogEntry(
        slug="food.spice_tolerance",
        category="food",
        description="How much spice/heat the user prefers in their food.",
        value_type=ValueType.ENUM,
        options=("none", "mild", "medium", "hot", "extra_hot"),
    ),
    CatalogEntry(
        slug="dev.tech_stack",
        category="dev",
        description="Preferred programming languages, frameworks, and tools the user works with.",
        value_type=ValueType.ARRAY,
    ),
    CatalogEntry(
        slug="dev.coding_style",
        category="dev",
        description="Coding conventions and style preferences (e.g., tabs vs spaces, naming conventions).",
        value_type=ValueType.STRING,
    ),
    CatalogEntry(
        slug="travel.seat_preference",
        category="travel",
        description="Preferred airplane seat location.",
        value_type=ValueType.ENUM,
        options=("window", "middle", "aisle"),
    ),
    CatalogEntry(
        slug="travel.meal_preference",
        category="travel",
        description="Meal preference for flights and travel.",
        value_type=ValueType.STRING,
    ),
    CatalogEntry(
        slug="communication.preferred_channels",
        category="communication",
        description="Preferred methods of communication (e.g., email, phone, text, slack).",
        value_type=ValueType.ARRAY,
    ),
    CatalogEntry(
        slug="location.default_temperature",
        category="location",
        description="Preferred temperature setting for a specific location (in Fahrenheit).",
        value_type=ValueType.STRING,
        scope=Scope.LOCATION,
    ),
    CatalogEntry(
        slug="location.quiet_hours",
        category="location",
        description="Time range when the user prefers no notifications or disturbances at this location.",
        value_type=ValueType.STRING,
        scope=Scope.LOCATION,
    ),
)

PREFERENCE_CATALOG = MappingProxyType({entry.slug: entry for entry in _ENTRIES})


# =============================================================================
# Lookups
# =============================================================================


def validate_slug_format(slug: str) -> bool:
    """Check a slug against the ``category.key`` format."""
    return isinstance(slug, str) and SLUG_PATTERN.match(slug) is not None


def is_known_slug(slug: str) -> bool:
    return slug in PREFERENCE_CATALOG


def get_definition(slug: str) -> CatalogEntry | None:
    return PREFERENCE_CATALOG.get(slug)


def get_all_slugs() -> list[str]:
    return list(PREFERENCE_CATALOG)


def get_slugs_by_category(category: str) -> list[str]:
    return [slug for slug, entry in PREFERENCE_CATALOG.items() if entry.category == category]


def get_all_categories() -> list[str]:
    return sorted({entry.category for entry in PREFERENCE_CATALOG.values()})


def search_catalog(query: str) -> list[str]:
    """Find slugs matching a query by slug prefix, category, or description keyword."""
    normalized = query.lower()
    return [
        slug
        for slug, entry in PREFERENCE_CATALOG.items()
        if slug.startswith(normalized)
        or normalized in entry.category
        or normalized in entry.description.lower()
    ]


def find_similar_slugs(text: str, limit: int = 3) -> list[str]:
    """Rank catalog slugs by similarity to ``text`` for "did you mean" hints.

    Scoring: +10 when the text starts with the slug's category, +5 when the
    slug starts with the text, +3 when the slug contains it, +2 when the
    description contains it. Ties keep catalog order.
    """
    normalized = text.lower()
    scored = []
    for slug, entry in PREFERENCE_CATALOG.items():
        score = 0
        if normalized.startswith(entry.category):
            score += 10
        if slug.startswith(normalized):
            score += 5
        if normalized in slug:
            score += 3
        if normalized in entry.description.lower():
            score += 2
        if score > 0:
            scored.append((score, slug))

    scored.sort(key=lambda item: item[0], reverse=True)
    return [slug for _, slug in scored[:limit]]


def export_prompt_schema() -> list[dict]:
    """List every catalog entry in the shape embedded into the AI prompt."""
    return [entry.to_schema() for entry in PREFERENCE_CATALOG.values()]


# =============================================================================
# Typed values
# =============================================================================


@dataclass(frozen=True)
class StringValue:
    value: str


@dataclass(frozen=True)
class BoolValue:
    value: bool


@dataclass(frozen=True)
class EnumValue:
    value: str


@dataclass(frozen=True)
class ArrayValue:
    # Item contents are not checked
    value: tuple

    def to_json(self) -> list:
        return list(self.value)


PreferenceValue = Union[StringValue, BoolValue, EnumValue, ArrayValue]


def parse_value(definition: CatalogEntry, value: Any) -> PreferenceValue:
    """Parse a raw JSON value into the variant the definition's value type expects.

    Raises:
        ValidationError: If the value does not have the expected shape.
    """
    value_type = definition.value_type

    if value_type == ValueType.BOOLEAN:
        if not isinstance(value, bool):
            raise ValidationError("Value must be a boolean")
        return BoolValue(value)

    if value_type == ValueType.STRING:
        if not isinstance(value, str):
            raise ValidationError("Value must be a string")
        return StringValue(value)

    if value_type == ValueType.ENUM:
        if not isinstance(value, str):
            raise ValidationError("Value must be a string")
        options = definition.options or ()
        if value not in options:
            raise ValidationError(f"Value must be one of: {', '.join(options)}")
        return EnumValue(value)

    if value_type == ValueType.ARRAY:
        if not isinstance(value, (list, tuple)):
            raise ValidationError("Value must be an array")
        return ArrayValue(tuple(value))

    raise ValidationError(f"Unknown value type: {value_type}")


def to_json_value(parsed: PreferenceValue) -> Any:
    """Convert a parsed value back to its JSON-storable form."""
    if isinstance(parsed, ArrayValue):
        return parsed.to_json()
    return parsed.value


# =============================================================================
# Validation checks
# =============================================================================


def validate_value(definition: CatalogEntry, value: Any) -> CheckResult:
    """Check that a value matches the definition's value type."""
    try:
        parse_value(definition, value)
    except ValidationError as e:
        return CheckResult(valid=False, error=e.message)
    return OK


def enforce_scope(definition: CatalogEntry, location_id: str | None) -> CheckResult:
    """Global preferences forbid a location id; location preferences require one."""
    has_location = location_id is not None and location_id != ""

    if definition.scope == Scope.GLOBAL and has_location:
        return CheckResult(
            valid=False,
            error=f'Preference "{definition.slug}" is global and cannot have a locationId',
        )
    if definition.scope == Scope.LOCATION and not has_location:
        return CheckResult(
            valid=False,
            error=f'Preference "{definition.slug}" requires a locationId',
        )
    return OK


def validate_confidence(confidence: Any) -> CheckResult:
    """Confidence must be a finite number in [0, 1]."""
    if confidence is None:
        return CheckResult(valid=False, error="Confidence is required for inferred preferences")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        return CheckResult(valid=False, error="Confidence must be a number")
    if not math.isfinite(confidence):
        return CheckResult(valid=False, error="Confidence must be a finite number")
    if confidence < 0 or confidence > 1:
        return CheckResult(valid=False, error="Confidence must be between 0 and 1")
    return OK


def require_valid_slug(slug: str) -> CatalogEntry:
    """Return the definition for ``slug`` or raise with a "did you mean" hint.

    Raises:
        ValidationError: If the slug is malformed or not in the catalog.
    """
    if not validate_slug_format(slug):
        raise ValidationError(
            f'Invalid slug format: "{slug}". Slugs must be lowercase with dots '
            f'(e.g., "food.dietary_restrictions")'
        )

    definition = get_definition(slug)
    if definition is None:
        similar = find_similar_slugs(slug)
        hint = f" Did you mean: {', '.join(similar)}?" if similar else ""
        raise ValidationError(f'Unknown preference slug: "{slug}".{hint}', suggestions=similar)
    return definition
