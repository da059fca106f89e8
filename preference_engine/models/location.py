"""Location model for user places that location-scoped preferences attach to."""

import enum

from sqlalchemy import Enum, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin, new_id


class LocationType(str, enum.Enum):
    """Kind of place."""

    HOME = "HOME"
    WORK = "WORK"
    OTHER = "OTHER"


class Location(Base, TimestampMixin):
    """A place owned by a user, e.g. "Home" or "Office"."""

    __tablename__ = "locations"
    __table_args__ = (
        Index("locations_user_id_idx", "user_id"),
        Index("locations_user_id_type_idx", "user_id", "type"),
    )

    location_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[LocationType] = mapped_column(
        Enum(LocationType, name="location_type"), nullable=False
    )
    label: Mapped[str] = mapped_column(String(255), nullable=False)
    address: Mapped[str] = mapped_column(String(1024), nullable=False)

    def to_dict(self) -> dict:
        return {
            "location_id": self.location_id,
            "user_id": self.user_id,
            "type": self.type.value,
            "label": self.label,
            "address": self.address,
        }

    def __repr__(self) -> str:
        return f"<Location(id={self.location_id}, label='{self.label}')>"
