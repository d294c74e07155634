"""Database schema definitions for the jobtrack store.

Contains the canonical SQL schema and the current schema version constant.
"""

from __future__ import annotations

SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS projects (
    id                       TEXT PRIMARY KEY,
    name                     TEXT NOT NULL,
    category                 TEXT NOT NULL,
    status                   TEXT NOT NULL,
    priority                 TEXT NOT NULL DEFAULT 'Normal',
    lead_id                  TEXT NOT NULL DEFAULT '',
    stage_entered_at         INTEGER NOT NULL,
    hold_active              INTEGER NOT NULL DEFAULT 0,
    hold_reason              TEXT NOT NULL DEFAULT '',
    hold_entered_at          INTEGER,
    pre_hold_status          TEXT,
    cancel_active            INTEGER NOT NULL DEFAULT 0,
    cancel_reason            TEXT NOT NULL DEFAULT '',
    cancelled_at             INTEGER,
    resumed_status           TEXT,
    invoice_sent             INTEGER NOT NULL DEFAULT 0,
    mockup_has_file          INTEGER NOT NULL DEFAULT 0,
    mockup_version           INTEGER NOT NULL DEFAULT 0,
    mockup_approval          TEXT NOT NULL DEFAULT 'pending',
    mockup_rejection_reason  TEXT NOT NULL DEFAULT '',
    version                  INTEGER NOT NULL DEFAULT 1,
    created_at               INTEGER NOT NULL,
    updated_at               INTEGER NOT NULL,

    CHECK (priority IN ('Normal', 'Urgent')),
    CHECK (mockup_approval IN ('pending', 'approved', 'rejected')),
    CHECK (NOT (hold_active = 1 AND cancel_active = 1))
);

CREATE INDEX IF NOT EXISTS idx_projects_status ON projects(status);
CREATE INDEX IF NOT EXISTS idx_projects_category ON projects(category);
CREATE INDEX IF NOT EXISTS idx_projects_lead ON projects(lead_id);
CREATE INDEX IF NOT EXISTS idx_projects_active_stage
    ON projects(hold_active, cancel_active, stage_entered_at);

CREATE TABLE IF NOT EXISTS payment_verifications (
    project_id   TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    kind         TEXT NOT NULL,
    recorded_at  INTEGER NOT NULL,
    PRIMARY KEY (project_id, kind),
    CHECK (kind IN ('part_payment', 'full_payment', 'po', 'authorized'))
);

CREATE TABLE IF NOT EXISTS events (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id  TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    event_type  TEXT NOT NULL,
    actor       TEXT DEFAULT '',
    old_value   TEXT,
    new_value   TEXT,
    comment     TEXT DEFAULT '',
    created_at  INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_events_project ON events(project_id, created_at);
CREATE INDEX IF NOT EXISTS idx_events_created ON events(created_at);

CREATE TABLE IF NOT EXISTS alert_dismissals (
    signature     TEXT PRIMARY KEY,
    dismissed_at  INTEGER NOT NULL,
    dismissed_by  TEXT NOT NULL DEFAULT ''
);
"""

CURRENT_SCHEMA_VERSION = 1
