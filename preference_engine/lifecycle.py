"""Preference lifecycle manager.

Owns the ACTIVE / SUGGESTED / REJECTED state machine for every
(user, location, slug) tuple:

    (none) -> ACTIVE                    set_preference
    (none) -> SUGGESTED -> ACTIVE       suggest_preference, accept_suggestion
    (none) -> SUGGESTED -> REJECTED     suggest_preference, reject_suggestion

A REJECTED row suppresses later suggestions for the tuple; only a direct
set_preference writes that tuple again. Each operation runs in one database
transaction while holding an in-process lock for its tuple, so the
find-then-write upserts and the accept/reject status moves cannot interleave.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable, ContextManager

from sqlalchemy.orm import Session

from .catalog import enforce_scope, parse_value, require_valid_slug, to_json_value, validate_confidence
from .database import get_db_session
from .errors import InvalidStateError, NotFoundError, OwnershipError, ValidationError
from .locations import LocationService
from .models import Preference, PreferenceStatus, SourceType
from .store import PreferenceStore

logger = logging.getLogger(__name__)

SessionScope = Callable[[], ContextManager[Session]]


class TupleLocks:
    """Per-key locks, created on demand and dropped when no longer held."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[tuple, list] = {}  # key -> [lock, holders]

    @contextmanager
    def hold(self, key: tuple):
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


def _normalize_location(location_id: str | None) -> str | None:
    return location_id or None


class PreferenceManager:
    """Entry point for reading and changing a user's stored preferences."""

    def __init__(self, session_scope: SessionScope = get_db_session, locks: TupleLocks | None = None):
        self.session_scope = session_scope
        self.locks = locks or TupleLocks()

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def _validate(self, slug: str, value: Any, location_id: str | None) -> Any:
        """Run catalog checks and return the value in its stored JSON form."""
        definition = require_valid_slug(slug)

        try:
            parsed = parse_value(definition, value)
        except ValidationError as e:
            raise ValidationError(f'Invalid value for "{slug}": {e.message}')

        scope = enforce_scope(definition, location_id)
        if not scope.valid:
            raise ValidationError(scope.error)

        return to_json_value(parsed)

    def _load_owned(self, store: PreferenceStore, preference_id: str, user_id: str, action: str) -> Preference:
        preference = store.find_by_id(preference_id)
        if preference is None:
            raise NotFoundError(f"Preference {preference_id} not found")
        if preference.user_id != user_id:
            raise OwnershipError(f"You can only {action} your own preferences")
        return preference

    def _tuple_key(self, user_id: str, location_id: str | None, slug: str) -> tuple:
        return (user_id, location_id, slug)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def set_preference(
        self, user_id: str, slug: str, value: Any, location_id: str | None = None
    ) -> Preference:
        """Create or overwrite the ACTIVE value for a tuple (user-authored).

        Raises:
            ValidationError: If the slug, value or scope is invalid.
            NotFoundError, OwnershipError: If the location is not the user's.
        """
        location_id = _normalize_location(location_id)
        stored_value = self._validate(slug, value, location_id)

        with self.locks.hold(self._tuple_key(user_id, location_id, slug)), self.session_scope() as session:
            if location_id:
                LocationService(session).verify_ownership(location_id, user_id)

            logger.info(f"Setting ACTIVE preference for user {user_id}: {slug}")
            return PreferenceStore(session).upsert(
                user_id,
                location_id,
                slug,
                PreferenceStatus.ACTIVE,
                value=stored_value,
                source_type=SourceType.USER,
            )

    def suggest_preference(
        self,
        user_id: str,
        slug: str,
        value: Any,
        confidence: float,
        location_id: str | None = None,
        evidence: dict | None = None,
    ) -> Preference | None:
        """Record an inferred preference as SUGGESTED.

        Returns None without writing anything when the user previously
        rejected this tuple.

        Raises:
            ValidationError: If the slug, value, scope or confidence is invalid.
            NotFoundError, OwnershipError: If the location is not the user's.
        """
        location_id = _normalize_location(location_id)
        stored_value = self._validate(slug, value, location_id)

        check = validate_confidence(confidence)
        if not check.valid:
            raise ValidationError(check.error)

        with self.locks.hold(self._tuple_key(user_id, location_id, slug)), self.session_scope() as session:
            if location_id:
                LocationService(session).verify_ownership(location_id, user_id)

            store = PreferenceStore(session)
            if store.find_first(user_id, location_id, slug, PreferenceStatus.REJECTED):
                logger.info(
                    f"Suggestion skipped for user {user_id}: {slug} was previously rejected"
                )
                return None

            logger.info(f"Creating SUGGESTED preference for user {user_id}: {slug}")
            return store.upsert(
                user_id,
                location_id,
                slug,
                PreferenceStatus.SUGGESTED,
                value=stored_value,
                confidence=float(confidence),
                evidence=evidence,
                source_type=SourceType.INFERRED,
            )

    def _resolve_suggestion(self, preference_id: str, user_id: str, action: str, target: PreferenceStatus) -> Preference:
        """Move a SUGGESTED row to ``target`` in a single transaction."""
        with self.session_scope() as session:
            peek = self._load_owned(PreferenceStore(session), preference_id, user_id, action)
            key = self._tuple_key(user_id, peek.location_id, peek.slug)

        with self.locks.hold(key), self.session_scope() as session:
            store = PreferenceStore(session)
            suggestion = self._load_owned(store, preference_id, user_id, action)
            if suggestion.status != PreferenceStatus.SUGGESTED:
                raise InvalidStateError(
                    f"Preference {preference_id} is not a suggestion "
                    f"(status: {suggestion.status.value})"
                )

            logger.info(
                f"{action.capitalize()}ing suggestion {preference_id} for user {user_id}: "
                f"{suggestion.slug}"
            )

            if target == PreferenceStatus.ACTIVE:
                result = store.upsert(
                    user_id,
                    suggestion.location_id,
                    suggestion.slug,
                    PreferenceStatus.ACTIVE,
                    value=suggestion.value,
                    source_type=SourceType.USER,
                )
            else:
                # Value kept for audit; the marker blocks future suggestions
                result = store.upsert(
                    user_id,
                    suggestion.location_id,
                    suggestion.slug,
                    PreferenceStatus.REJECTED,
                    value=suggestion.value,
                    source_type=SourceType.INFERRED,
                )

            store.delete(suggestion)
            return result

    def accept_suggestion(self, preference_id: str, user_id: str) -> Preference:
        """Promote a suggestion to ACTIVE and remove the SUGGESTED row, atomically.

        Raises:
            NotFoundError: If the id does not exist.
            OwnershipError: If the row belongs to another user.
            InvalidStateError: If the row is not SUGGESTED.
        """
        return self._resolve_suggestion(preference_id, user_id, "accept", PreferenceStatus.ACTIVE)

    def reject_suggestion(self, preference_id: str, user_id: str) -> bool:
        """Replace a suggestion with a REJECTED marker, atomically.

        Raises:
            NotFoundError: If the id does not exist.
            OwnershipError: If the row belongs to another user.
            InvalidStateError: If the row is not SUGGESTED.
        """
        self._resolve_suggestion(preference_id, user_id, "reject", PreferenceStatus.REJECTED)
        return True

    def delete_preference(self, preference_id: str, user_id: str) -> Preference:
        with self.session_scope() as session:
            store = PreferenceStore(session)
            preference = self._load_owned(store, preference_id, user_id, "delete")
            logger.info(f"Deleting preference {preference_id} for user {user_id}")
            return store.delete(preference)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_preference(self, preference_id: str, user_id: str) -> Preference:
        with self.session_scope() as session:
            return self._load_owned(PreferenceStore(session), preference_id, user_id, "access")

    def get_active_preferences(self, user_id: str, location_id: str | None = None) -> list[Preference]:
        """ACTIVE preferences as seen from a location.

        Without a location only global rows are returned. With one, global
        rows are overlaid by that location's rows for the same slug (the most
        specific value wins), newest first.
        """
        location_id = _normalize_location(location_id)
        logger.info(
            f"Fetching ACTIVE preferences for user {user_id}, location: {location_id or 'global only'}"
        )

        with self.session_scope() as session:
            store = PreferenceStore(session)
            if not location_id:
                return store.find_by_status(user_id, PreferenceStatus.ACTIVE, None)

            LocationService(session).verify_ownership(location_id, user_id)
            merged: dict[str, Preference] = {}
            for preference in store.find_by_status(user_id, PreferenceStatus.ACTIVE, None):
                merged[preference.slug] = preference
            for preference in store.find_by_status(user_id, PreferenceStatus.ACTIVE, location_id):
                merged[preference.slug] = preference

            return sorted(merged.values(), key=lambda p: p.updated_at, reverse=True)

    def get_suggested_preferences(self, user_id: str, location_id: str | None = None) -> list[Preference]:
        """SUGGESTED preferences; with a location, the union of global and location rows."""
        location_id = _normalize_location(location_id)
        logger.info(
            f"Fetching SUGGESTED preferences for user {user_id}, location: {location_id or 'global only'}"
        )

        with self.session_scope() as session:
            store = PreferenceStore(session)
            if not location_id:
                return store.find_by_status(user_id, PreferenceStatus.SUGGESTED, None)

            LocationService(session).verify_ownership(location_id, user_id)
            return store.find_global_or_location(user_id, PreferenceStatus.SUGGESTED, location_id)

    def get_active_snapshot(self, user_id: str, location_id: str | None = None) -> dict[str, Any]:
        """``slug -> value`` map of the effective ACTIVE preferences."""
        return {p.slug: p.value for p in self.get_active_preferences(user_id, location_id)}

    def count(self, user_id: str, status: PreferenceStatus | None = None) -> int:
        with self.session_scope() as session:
            return PreferenceStore(session).count(user_id, status)
