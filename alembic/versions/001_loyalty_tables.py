"""Loyalty ledger tables.

Creates users, destinations, badges, user_badges, checkins and points_ledger.
The daily check-in limit lives in the uq_checkins_user_destination_day
constraint; the engine relies on it instead of a read-then-insert check.

Revision ID: 001_loyalty_tables
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_loyalty_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Users ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id BIGSERIAL PRIMARY KEY,
            display_name VARCHAR(64),
            total_points INTEGER NOT NULL DEFAULT 0,
            level INTEGER NOT NULL DEFAULT 1,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    # --- Destinations (catalog) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS destinations (
            id BIGSERIAL PRIMARY KEY,
            name VARCHAR(200) NOT NULL,
            latitude DOUBLE PRECISION NOT NULL,
            longitude DOUBLE PRECISION NOT NULL,
            visit_radius_meters INTEGER NOT NULL DEFAULT 100,
            qr_code VARCHAR(100),
            category_id INTEGER,
            city VARCHAR(100),
            points_reward INTEGER NOT NULL DEFAULT 0,
            bonus_multiplier DOUBLE PRECISION NOT NULL DEFAULT 1,
            bonus_ends_at TIMESTAMPTZ,
            is_active BOOLEAN NOT NULL DEFAULT true
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_destinations_category_id
        ON destinations(category_id)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_destinations_city
        ON destinations(city)
    """)

    # --- Badges (catalog) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS badges (
            id SERIAL PRIMARY KEY,
            slug VARCHAR(64) UNIQUE NOT NULL,
            name VARCHAR(128) NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            requirement_type VARCHAR(16) NOT NULL,
            requirement_value INTEGER NOT NULL,
            requirement_details JSONB,
            points_reward INTEGER NOT NULL DEFAULT 0,
            rarity VARCHAR(16) NOT NULL DEFAULT 'common',
            is_active BOOLEAN NOT NULL DEFAULT true,
            is_hidden BOOLEAN NOT NULL DEFAULT false,
            display_order INTEGER NOT NULL DEFAULT 0
        )
    """)

    # --- User Badges ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_badges (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            badge_id INTEGER NOT NULL REFERENCES badges(id) ON DELETE CASCADE,
            progress INTEGER NOT NULL DEFAULT 0,
            is_earned BOOLEAN NOT NULL DEFAULT false,
            earned_at TIMESTAMPTZ,
            points_awarded INTEGER NOT NULL DEFAULT 0,
            updated_at TIMESTAMPTZ,
            CONSTRAINT uq_user_badges_user_badge UNIQUE (user_id, badge_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_user_badges_user_earned
        ON user_badges(user_id, is_earned)
    """)

    # --- Check-ins ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS checkins (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            destination_id BIGINT NOT NULL REFERENCES destinations(id) ON DELETE CASCADE,
            method VARCHAR(16) NOT NULL,
            reported_lat DOUBLE PRECISION,
            reported_lon DOUBLE PRECISION,
            distance_meters DOUBLE PRECISION,
            points_earned INTEGER NOT NULL DEFAULT 0,
            bonus_points INTEGER NOT NULL DEFAULT 0,
            verified BOOLEAN NOT NULL DEFAULT true,
            checked_in_at TIMESTAMPTZ NOT NULL,
            checkin_date DATE NOT NULL,
            CONSTRAINT uq_checkins_user_destination_day UNIQUE (user_id, destination_id, checkin_date)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_checkins_user_verified
        ON checkins(user_id, verified)
    """)

    # --- Points Ledger (append-only) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS points_ledger (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            delta INTEGER NOT NULL,
            balance_after INTEGER NOT NULL,
            source_type VARCHAR(32) NOT NULL,
            source_id VARCHAR(64),
            description VARCHAR(256),
            occurred_at TIMESTAMPTZ NOT NULL
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_points_ledger_user_id
        ON points_ledger(user_id, id)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_points_ledger_source
        ON points_ledger(source_type, source_id)
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS points_ledger CASCADE")
    op.execute("DROP TABLE IF EXISTS checkins CASCADE")
    op.execute("DROP TABLE IF EXISTS user_badges CASCADE")
    op.execute("DROP TABLE IF EXISTS badges CASCADE")
    op.execute("DROP TABLE IF EXISTS destinations CASCADE")
    op.execute("DROP TABLE IF EXISTS users CASCADE")
