"""Persistence primitives for preference rows.

Thin query layer over a SQLAlchemy session. It never commits: the caller
owns the transaction, so several primitives can be combined atomically.
"""

import logging
from typing import Any

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from .models import Preference, PreferenceStatus, utcnow

logger = logging.getLogger(__name__)

# Passed as location_id to mean "any location, including global"
ANY_LOCATION: Any = object()


class PreferenceStore:
    """Query and write helpers for the ``user_preferences`` table."""

    def __init__(self, session: Session):
        self.session = session

    def find_by_id(self, preference_id: str) -> Preference | None:
        return self.session.get(Preference, preference_id)

    def find_by_status(
        self,
        user_id: str,
        status: PreferenceStatus,
        location_id: str | None = ANY_LOCATION,
    ) -> list[Preference]:
        """Rows for a user in one status, newest first.

        ``location_id=None`` restricts to global rows; a value restricts to
        that location; the default returns every row regardless of location.
        """
        query = self.session.query(Preference).filter(
            Preference.user_id == user_id,
            Preference.status == status,
        )
        if location_id is None:
            query = query.filter(Preference.location_id.is_(None))
        elif location_id is not ANY_LOCATION:
            query = query.filter(Preference.location_id == location_id)
        return query.order_by(Preference.updated_at.desc()).all()

    def find_global_or_location(
        self, user_id: str, status: PreferenceStatus, location_id: str
    ) -> list[Preference]:
        """Global rows plus rows for one location, newest first."""
        return (
            self.session.query(Preference)
            .filter(
                Preference.user_id == user_id,
                Preference.status == status,
                or_(Preference.location_id.is_(None), Preference.location_id == location_id),
            )
            .order_by(Preference.updated_at.desc())
            .all()
        )

    def find_first(
        self,
        user_id: str,
        location_id: str | None,
        slug: str,
        status: PreferenceStatus,
    ) -> Preference | None:
        location_filter = (
            Preference.location_id.is_(None)
            if location_id is None
            else Preference.location_id == location_id
        )
        return (
            self.session.query(Preference)
            .filter(
                Preference.user_id == user_id,
                location_filter,
                Preference.slug == slug,
                Preference.status == status,
            )
            .first()
        )

    def create(self, **fields) -> Preference:
        preference = Preference(**fields)
        self.session.add(preference)
        self.session.flush()
        return preference

    def update(self, preference: Preference, **patch) -> Preference:
        for key, value in patch.items():
            setattr(preference, key, value)
        self.session.flush()
        return preference

    def delete(self, preference: Preference) -> Preference:
        logger.info(f"Deleting preference: {preference.id}")
        self.session.delete(preference)
        self.session.flush()
        return preference

    def count(self, user_id: str, status: PreferenceStatus | None = None) -> int:
        query = self.session.query(func.count(Preference.id)).filter(
            Preference.user_id == user_id
        )
        if status is not None:
            query = query.filter(Preference.status == status)
        return query.scalar() or 0

    def upsert(
        self,
        user_id: str,
        location_id: str | None,
        slug: str,
        status: PreferenceStatus,
        **values,
    ) -> Preference:
        """Create the row for a (user, location, slug, status) tuple or overwrite it in place.

        Callers must hold the tuple's lock for the whole transaction; the
        unique indexes reject any writer that bypasses it.
        """
        existing = self.find_first(user_id, location_id, slug, status)
        if existing is not None:
            logger.info(f"Updating {status.value} preference {existing.id} ({slug})")
            return self.update(existing, updated_at=utcnow(), **values)

        logger.info(f"Creating {status.value} preference for user {user_id}: {slug}")
        return self.create(
            user_id=user_id,
            location_id=location_id,
            slug=slug,
            status=status,
            **values,
        )
