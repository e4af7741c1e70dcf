"""DDL for the tables the repositories read and write.

The UNIQUE constraints on ``categories.name`` and ``sources.name`` are what
makes concurrent get-or-create safe; the repositories rely on them.
"""

SCHEMA_STATEMENTS = (
    "CREATE EXTENSION IF NOT EXISTS postgis",
    """
    CREATE TABLE IF NOT EXISTS categories (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        name TEXT NOT NULL,
        description TEXT,
        icon TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        CONSTRAINT uq_categories_name UNIQUE (name)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sources (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        name TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        CONSTRAINT uq_sources_name UNIQUE (name)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS events (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        title TEXT NOT NULL,
        description TEXT,
        latitude DOUBLE PRECISION NOT NULL CHECK (latitude BETWEEN -90 AND 90),
        longitude DOUBLE PRECISION NOT NULL CHECK (longitude BETWEEN -180 AND 180),
        location GEOGRAPHY(Point, 4326) NOT NULL,
        address TEXT,
        start_time TIMESTAMPTZ NOT NULL,
        end_time TIMESTAMPTZ,
        category_id UUID NOT NULL REFERENCES categories (id),
        source_id UUID NOT NULL REFERENCES sources (id),
        source_url TEXT,
        image_url TEXT,
        organizer_name TEXT,
        organizer_contact TEXT,
        capacity INTEGER CHECK (capacity IS NULL OR capacity >= 0),
        is_verified BOOLEAN NOT NULL DEFAULT false,
        raw_data JSONB,
        created_at TIMESTAMPTZ NOT NULL DEFAULT clock_timestamp(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT clock_timestamp(),
        CHECK (end_time IS NULL OR end_time >= start_time)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_events_start_time ON events (start_time)",
    "CREATE INDEX IF NOT EXISTS idx_events_category ON events (category_id)",
    "CREATE INDEX IF NOT EXISTS idx_events_created_at ON events (created_at)",
    "CREATE INDEX IF NOT EXISTS idx_events_location ON events USING GIST (location)",
)
