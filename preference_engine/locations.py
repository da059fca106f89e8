"""Location ownership lookups used to scope preferences."""

import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from .errors import NotFoundError, OwnershipError
from .models import Location, LocationType, Preference

logger = logging.getLogger(__name__)


class LocationService:
    """Reads and writes ``locations`` rows inside the caller's session."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, user_id: str, type: LocationType, label: str, address: str) -> Location:
        logger.info(f"Creating location for user {user_id}: {type.value}")
        location = Location(user_id=user_id, type=type, label=label, address=address)
        self.session.add(location)
        self.session.flush()
        return location

    def list_for_user(self, user_id: str) -> list[Location]:
        return (
            self.session.query(Location)
            .filter(Location.user_id == user_id)
            .order_by(Location.created_at.desc())
            .all()
        )

    def find_by_type(self, user_id: str, type: LocationType) -> list[Location]:
        logger.info(f"Fetching {type.value} locations for user: {user_id}")
        return (
            self.session.query(Location)
            .filter(Location.user_id == user_id, Location.type == type)
            .order_by(Location.created_at.desc())
            .all()
        )

    def verify_ownership(self, location_id: str, user_id: str) -> Location:
        """Return the location if it exists and belongs to ``user_id``.

        Raises:
            NotFoundError: If no such location exists.
            OwnershipError: If it belongs to another user.
        """
        location = self.session.get(Location, location_id)
        if location is None:
            raise NotFoundError(f"Location {location_id} not found")
        if location.user_id != user_id:
            raise OwnershipError("You can only access your own locations")
        return location

    def update(
        self,
        location_id: str,
        user_id: str,
        type: LocationType | None = None,
        label: str | None = None,
        address: str | None = None,
    ) -> Location:
        """Patch the given fields; ``None`` leaves a field as it is."""
        location = self.verify_ownership(location_id, user_id)

        logger.info(f"Updating location {location_id} for user: {user_id}")
        if type is not None:
            location.type = type
        if label is not None:
            location.label = label
        if address is not None:
            location.address = address
        self.session.flush()
        return location

    def delete(self, location_id: str, user_id: str) -> Location:
        """Delete the location together with every preference scoped to it."""
        location = self.verify_ownership(location_id, user_id)

        logger.info(f"Deleting location {location_id} for user: {user_id}")
        # Not every backend enforces the FK cascade, so remove scoped rows here
        removed = (
            self.session.query(Preference)
            .filter(Preference.location_id == location_id)
            .delete(synchronize_session="fetch")
        )
        if removed:
            logger.info(f"Removed {removed} preferences scoped to location {location_id}")
        self.session.delete(location)
        self.session.flush()
        return location

    def count(self, user_id: str) -> int:
        return (
            self.session.query(func.count(Location.location_id))
            .filter(Location.user_id == user_id)
            .scalar()
            or 0
        )
