#!/usr/bin/env python3
"""Create integration ingestion tables for H2Own Integrations."""

import os
import psycopg2
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")

SQL = """
-- 1. integrations
CREATE TABLE IF NOT EXISTS integrations (
    integration_id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    user_id UUID NOT NULL,
    provider VARCHAR(64) NOT NULL,
    status VARCHAR(20) NOT NULL DEFAULT 'connected',
    scopes JSONB,
    external_account_id VARCHAR(255),
    credentials JSONB,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE(user_id, provider)
);
CREATE INDEX IF NOT EXISTS idx_integrations_provider ON integrations(provider);

-- 2. integration_devices
CREATE TABLE IF NOT EXISTS integration_devices (
    device_id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    integration_id UUID NOT NULL REFERENCES integrations(integration_id) ON DELETE CASCADE,
    provider_device_id VARCHAR(255) NOT NULL,
    device_type VARCHAR(64) NOT NULL DEFAULT 'sensor',
    label VARCHAR(255),
    pool_id UUID,
    status VARCHAR(20) NOT NULL DEFAULT 'discovered',
    metadata JSONB,
    last_seen_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE(integration_id, provider_device_id)
);
CREATE INDEX IF NOT EXISTS idx_integration_devices_pool_id ON integration_devices(pool_id);
CREATE INDEX IF NOT EXISTS idx_integration_devices_provider_device_id ON integration_devices(provider_device_id);

-- 3. sensor_readings (append-only)
CREATE TABLE IF NOT EXISTS sensor_readings (
    reading_id BIGSERIAL PRIMARY KEY,
    pool_id UUID NOT NULL,
    integration_id UUID REFERENCES integrations(integration_id) ON DELETE SET NULL,
    device_id UUID REFERENCES integration_devices(device_id) ON DELETE SET NULL,
    metric VARCHAR(64) NOT NULL,
    value NUMERIC(14, 4) NOT NULL,
    unit VARCHAR(16),
    recorded_at TIMESTAMPTZ NOT NULL,
    source VARCHAR(64) NOT NULL,
    quality INTEGER,
    raw_payload JSONB,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_sensor_readings_pool_recorded ON sensor_readings(pool_id, recorded_at DESC);

-- 4. integration_ingestion_failures (dead-letter queue)
CREATE TABLE IF NOT EXISTS integration_ingestion_failures (
    failure_id BIGSERIAL PRIMARY KEY,
    provider VARCHAR(64) NOT NULL,
    headers JSONB NOT NULL DEFAULT '{}'::jsonb,
    payload JSONB NOT NULL DEFAULT '{}'::jsonb,
    status VARCHAR(20) NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending', 'in_flight', 'resolved', 'dead')),
    attempts INTEGER NOT NULL DEFAULT 1,
    last_error VARCHAR(1000),
    next_attempt_at TIMESTAMPTZ,
    claimed_at TIMESTAMPTZ,
    resolved_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_ingestion_failures_status_next_attempt
    ON integration_ingestion_failures(status, next_attempt_at);

-- 5. observability_metric_snapshots
CREATE TABLE IF NOT EXISTS observability_metric_snapshots (
    id BIGSERIAL PRIMARY KEY,
    source VARCHAR(64) NOT NULL,
    request_id VARCHAR(128),
    counters JSONB NOT NULL DEFAULT '{}'::jsonb,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""

def main():
    print(f"Connecting to database...")
    conn = psycopg2.connect(DATABASE_URL)
    conn.autocommit = True
    cur = conn.cursor()

    print("Creating tables...")
    cur.execute(SQL)

    # Verify
    cur.execute("SELECT table_name FROM information_schema.tables WHERE table_schema = 'public' ORDER BY table_name;")
    tables = cur.fetchall()
    print(f"\nTables created: {[t[0] for t in tables]}")

    cur.execute("SELECT status, COUNT(*) FROM integration_ingestion_failures GROUP BY status;")
    failures = cur.fetchall()
    print(f"Ingestion failures by status: {failures}")

    cur.close()
    conn.close()
    print("\nDone!")

if __name__ == "__main__":
    main()
