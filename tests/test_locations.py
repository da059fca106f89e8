"""Pin location ownership checks and location edits."""

import pytest

from conftest import OTHER_USER, USER
from preference_engine.errors import NotFoundError, OwnershipError
from preference_engine.locations import LocationService
from preference_engine.models import Location, LocationType, Preference


class TestLocationService:
    def test_create_and_list(self, db_session):
        with db_session() as db:
            service = LocationService(db)
            service.create(USER, LocationType.HOME, "Home", "1 Main St")
            service.create(OTHER_USER, LocationType.WORK, "Office", "9 Elm St")

        with db_session() as db:
            assert [loc.label for loc in LocationService(db).list_for_user(USER)] == ["Home"]

    def test_find_by_type_and_count(self, db_session, home):
        with db_session() as db:
            LocationService(db).create(USER, LocationType.WORK, "Office", "5 Oak Ave")

        with db_session() as db:
            service = LocationService(db)
            assert [loc.label for loc in service.find_by_type(USER, LocationType.WORK)] == ["Office"]
            assert service.count(USER) == 2
            assert service.count(OTHER_USER) == 0

    def test_update_patches_only_given_fields(self, db_session, home):
        with db_session() as db:
            LocationService(db).update(home.location_id, USER, label="Cabin")

        with db_session() as db:
            location = db.get(Location, home.location_id)
            assert (location.label, location.address, location.type) == (
                "Cabin", "1 Main St", LocationType.HOME,
            )

    def test_update_foreign_location_rejected(self, db_session, foreign_location):
        with pytest.raises(OwnershipError):
            with db_session() as db:
                LocationService(db).update(foreign_location.location_id, USER, label="Mine")

        with db_session() as db:
            assert db.get(Location, foreign_location.location_id).label == "Office"

    def test_delete_removes_scoped_preferences_only(self, db_session, manager, home):
        manager.set_preference(USER, "location.quiet_hours", "22:00", home.location_id)
        manager.suggest_preference(USER, "location.default_temperature", "70", 0.7, home.location_id)
        manager.set_preference(USER, "system.response_tone", "casual")

        with db_session() as db:
            LocationService(db).delete(home.location_id, USER)

        with db_session() as db:
            assert db.get(Location, home.location_id) is None
            assert [p.slug for p in db.query(Preference).all()] == ["system.response_tone"]

    def test_delete_missing_location(self, db_session):
        with pytest.raises(NotFoundError, match="Location nope not found"):
            with db_session() as db:
                LocationService(db).delete("nope", USER)
