"""preferences schema: locations and user_preferences.

Revision ID: 001
Revises:
Create Date: 2026-10-19

A preference row is unique per (user, location, slug, status). Global rows
have a NULL location_id, which a plain unique constraint does not cover, so
they get a partial unique index as well.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

location_type = sa.Enum("HOME", "WORK", "OTHER", name="location_type")
preference_status = sa.Enum("ACTIVE", "SUGGESTED", "REJECTED", name="preference_status")
source_type = sa.Enum("USER", "INFERRED", "IMPORTED", "SYSTEM", name="source_type")


def upgrade() -> None:
    # === Locations ===
    op.create_table(
        "locations",
        sa.Column("location_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("type", location_type, nullable=False),
        sa.Column("label", sa.String(length=255), nullable=False),
        sa.Column("address", sa.String(length=1024), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("location_id"),
    )
    op.create_index("locations_user_id_idx", "locations", ["user_id"])
    op.create_index("locations_user_id_type_idx", "locations", ["user_id", "type"])

    # === Preferences ===
    op.create_table(
        "user_preferences",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("location_id", sa.String(length=36), nullable=True),
        sa.Column("slug", sa.String(length=255), nullable=False),
        sa.Column("value", sa.JSON(), nullable=False),
        sa.Column("status", preference_status, nullable=False),
        sa.Column("source_type", source_type, nullable=False),
        sa.Column("confidence", sa.Float(), nullable=True),
        sa.Column("evidence", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(
            ["location_id"], ["locations.location_id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "user_id", "location_id", "slug", "status",
            name="user_preferences_user_id_location_id_slug_status_key",
        ),
    )
    op.create_index(
        "user_preferences_global_unique",
        "user_preferences",
        ["user_id", "slug", "status"],
        unique=True,
        postgresql_where=sa.text("location_id IS NULL"),
        sqlite_where=sa.text("location_id IS NULL"),
    )
    op.create_index(
        "user_preferences_user_id_location_id_idx",
        "user_preferences",
        ["user_id", "location_id"],
    )
    op.create_index("user_preferences_slug_idx", "user_preferences", ["slug"])


def downgrade() -> None:
    op.drop_index("user_preferences_slug_idx", table_name="user_preferences")
    op.drop_index("user_preferences_user_id_location_id_idx", table_name="user_preferences")
    op.drop_index("user_preferences_global_unique", table_name="user_preferences")
    op.drop_table("user_preferences")
    op.drop_index("locations_user_id_type_idx", table_name="locations")
    op.drop_index("locations_user_id_idx", table_name="locations")
    op.drop_table("locations")

    bind = op.get_bind()
    source_type.drop(bind, checkfirst=True)
    preference_status.drop(bind, checkfirst=True)
    location_type.drop(bind, checkfirst=True)
