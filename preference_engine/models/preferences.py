"""Preference model for storing typed, slug-keyed user preferences."""

import enum
from typing import Any

from sqlalchemy import Enum, Float, ForeignKey, Index, JSON, String, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column

from ..catalog import get_definition
from .base import Base, TimestampMixin, new_id


class PreferenceStatus(str, enum.Enum):
    """Lifecycle state of a stored preference row."""

    ACTIVE = "ACTIVE"
    SUGGESTED = "SUGGESTED"
    REJECTED = "REJECTED"


class SourceType(str, enum.Enum):
    """Who produced the preference value."""

    USER = "USER"
    INFERRED = "INFERRED"
    IMPORTED = "IMPORTED"
    SYSTEM = "SYSTEM"


class Preference(Base, TimestampMixin):
    """Model for storing user preferences.

    One row per (user, location, slug, status): a preference can be ACTIVE,
    SUGGESTED and REJECTED at the same time, but never twice in one status.
    REJECTED rows act as do-not-resuggest markers.
    """

    __tablename__ = "user_preferences"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "location_id", "slug", "status",
            name="user_preferences_user_id_location_id_slug_status_key",
        ),
        # NULLs never collide in a unique constraint, so global rows need their own index
        Index(
            "user_preferences_global_unique",
            "user_id", "slug", "status",
            unique=True,
            postgresql_where=text("location_id IS NULL"),
            sqlite_where=text("location_id IS NULL"),
        ),
        Index("user_preferences_user_id_location_id_idx", "user_id", "location_id"),
        Index("user_preferences_slug_idx", "slug"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    location_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("locations.location_id", ondelete="CASCADE"),
        nullable=True,
    )
    slug: Mapped[str] = mapped_column(String(255), nullable=False)
    value: Mapped[Any] = mapped_column(JSON, nullable=False)
    status: Mapped[PreferenceStatus] = mapped_column(
        Enum(PreferenceStatus, name="preference_status"),
        default=PreferenceStatus.ACTIVE,
        nullable=False,
    )
    source_type: Mapped[SourceType] = mapped_column(
        Enum(SourceType, name="source_type"),
        default=SourceType.USER,
        nullable=False,
    )
    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    evidence: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    def to_dict(self) -> dict:
        """Serialize the row, enriched with its catalog category/description."""
        definition = get_definition(self.slug)
        return {
            "id": self.id,
            "user_id": self.user_id,
            "location_id": self.location_id,
            "slug": self.slug,
            "value": self.value,
            "status": self.status.value,
            "source_type": self.source_type.value,
            "confidence": self.confidence,
            "evidence": self.evidence,
            "category": definition.category if definition else None,
            "description": definition.description if definition else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<Preference(id={self.id}, slug='{self.slug}', status={self.status.value})>"
