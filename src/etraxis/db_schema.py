"""Database schema definitions for the etraxis issue tracker."""

from __future__ import annotations

CURRENT_SCHEMA_VERSION = 1

SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS users (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    email       TEXT NOT NULL UNIQUE,
    fullname    TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    admin       INTEGER NOT NULL DEFAULT 0,
    disabled    INTEGER NOT NULL DEFAULT 0,
    created_at  INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS projects (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    name        TEXT NOT NULL UNIQUE,
    description TEXT NOT NULL DEFAULT '',
    suspended   INTEGER NOT NULL DEFAULT 0,
    created_at  INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS groups (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id  INTEGER REFERENCES projects(id) ON DELETE CASCADE,
    name        TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT ''
);

CREATE INDEX IF NOT EXISTS idx_groups_project ON groups(project_id);

CREATE TABLE IF NOT EXISTS membership (
    group_id INTEGER NOT NULL REFERENCES groups(id) ON DELETE CASCADE,
    user_id  INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    PRIMARY KEY (group_id, user_id)
);

CREATE INDEX IF NOT EXISTS idx_membership_user ON membership(user_id);

CREATE TABLE IF NOT EXISTS templates (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id   INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    name         TEXT NOT NULL,
    prefix       TEXT NOT NULL,
    description  TEXT NOT NULL DEFAULT '',
    locked       INTEGER NOT NULL DEFAULT 1,
    critical_age INTEGER,
    frozen_time  INTEGER,
    UNIQUE (project_id, name),
    UNIQUE (project_id, prefix)
);

CREATE TABLE IF NOT EXISTS template_role_permissions (
    template_id INTEGER NOT NULL REFERENCES templates(id) ON DELETE CASCADE,
    role        TEXT NOT NULL,
    permission  TEXT NOT NULL,
    PRIMARY KEY (template_id, role, permission)
);

CREATE TABLE IF NOT EXISTS template_group_permissions (
    template_id INTEGER NOT NULL REFERENCES templates(id) ON DELETE CASCADE,
    group_id    INTEGER NOT NULL REFERENCES groups(id) ON DELETE CASCADE,
    permission  TEXT NOT NULL,
    PRIMARY KEY (template_id, group_id, permission)
);

CREATE TABLE IF NOT EXISTS states (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    template_id INTEGER NOT NULL REFERENCES templates(id) ON DELETE CASCADE,
    name        TEXT NOT NULL,
    type        TEXT NOT NULL,
    responsible TEXT NOT NULL,
    UNIQUE (template_id, name),
    CHECK (type IN ('initial', 'intermediate', 'final')),
    CHECK (responsible IN ('assign', 'keep', 'remove'))
);

CREATE TABLE IF NOT EXISTS state_role_transitions (
    from_state_id INTEGER NOT NULL REFERENCES states(id) ON DELETE CASCADE,
    to_state_id   INTEGER NOT NULL REFERENCES states(id) ON DELETE CASCADE,
    role          TEXT NOT NULL,
    PRIMARY KEY (from_state_id, to_state_id, role)
);

CREATE TABLE IF NOT EXISTS state_group_transitions (
    from_state_id INTEGER NOT NULL REFERENCES states(id) ON DELETE CASCADE,
    to_state_id   INTEGER NOT NULL REFERENCES states(id) ON DELETE CASCADE,
    group_id      INTEGER NOT NULL REFERENCES groups(id) ON DELETE CASCADE,
    PRIMARY KEY (from_state_id, to_state_id, group_id)
);

CREATE TABLE IF NOT EXISTS state_responsible_groups (
    state_id INTEGER NOT NULL REFERENCES states(id) ON DELETE CASCADE,
    group_id INTEGER NOT NULL REFERENCES groups(id) ON DELETE CASCADE,
    PRIMARY KEY (state_id, group_id)
);

CREATE TABLE IF NOT EXISTS fields (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    state_id    INTEGER NOT NULL REFERENCES states(id) ON DELETE CASCADE,
    name        TEXT NOT NULL,
    type        TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    position    INTEGER NOT NULL,
    required    INTEGER NOT NULL DEFAULT 0,
    removed_at  INTEGER,
    parameters  TEXT NOT NULL DEFAULT '{}'
);

CREATE INDEX IF NOT EXISTS idx_fields_state ON fields(state_id, position);

CREATE TABLE IF NOT EXISTS field_role_permissions (
    field_id   INTEGER NOT NULL REFERENCES fields(id) ON DELETE CASCADE,
    role       TEXT NOT NULL,
    permission TEXT NOT NULL,
    PRIMARY KEY (field_id, role),
    CHECK (permission IN ('R', 'RW'))
);

CREATE TABLE IF NOT EXISTS field_group_permissions (
    field_id   INTEGER NOT NULL REFERENCES fields(id) ON DELETE CASCADE,
    group_id   INTEGER NOT NULL REFERENCES groups(id) ON DELETE CASCADE,
    permission TEXT NOT NULL,
    PRIMARY KEY (field_id, group_id),
    CHECK (permission IN ('R', 'RW'))
);

CREATE TABLE IF NOT EXISTS list_items (
    id       INTEGER PRIMARY KEY AUTOINCREMENT,
    field_id INTEGER NOT NULL REFERENCES fields(id) ON DELETE CASCADE,
    value    INTEGER NOT NULL,
    text     TEXT NOT NULL,
    UNIQUE (field_id, value),
    UNIQUE (field_id, text),
    CHECK (value > 0)
);

CREATE TABLE IF NOT EXISTS issues (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    state_id       INTEGER NOT NULL REFERENCES states(id),
    subject        TEXT NOT NULL,
    author_id      INTEGER NOT NULL REFERENCES users(id),
    responsible_id INTEGER REFERENCES users(id),
    origin_id      INTEGER REFERENCES issues(id) ON DELETE SET NULL,
    created_at     INTEGER NOT NULL,
    changed_at     INTEGER NOT NULL,
    closed_at      INTEGER,
    resumes_at     INTEGER
);

CREATE INDEX IF NOT EXISTS idx_issues_state ON issues(state_id);
CREATE INDEX IF NOT EXISTS idx_issues_author ON issues(author_id);
CREATE INDEX IF NOT EXISTS idx_issues_responsible ON issues(responsible_id);

CREATE TABLE IF NOT EXISTS events (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    issue_id   INTEGER NOT NULL REFERENCES issues(id) ON DELETE CASCADE,
    type       TEXT NOT NULL,
    user_id    INTEGER NOT NULL REFERENCES users(id),
    created_at INTEGER NOT NULL,
    parameter  TEXT
);

CREATE INDEX IF NOT EXISTS idx_events_issue ON events(issue_id, created_at);
CREATE INDEX IF NOT EXISTS idx_events_user ON events(user_id);

CREATE TABLE IF NOT EXISTS transitions (
    id       INTEGER PRIMARY KEY AUTOINCREMENT,
    event_id INTEGER NOT NULL UNIQUE REFERENCES events(id) ON DELETE CASCADE,
    state_id INTEGER NOT NULL REFERENCES states(id)
);

CREATE TABLE IF NOT EXISTS field_values (
    transition_id INTEGER NOT NULL REFERENCES transitions(id) ON DELETE CASCADE,
    field_id      INTEGER NOT NULL REFERENCES fields(id),
    value,
    PRIMARY KEY (transition_id, field_id)
);

CREATE INDEX IF NOT EXISTS idx_field_values_field ON field_values(field_id);

CREATE TABLE IF NOT EXISTS changes (
    id        INTEGER PRIMARY KEY AUTOINCREMENT,
    event_id  INTEGER NOT NULL REFERENCES events(id) ON DELETE CASCADE,
    field_id  INTEGER REFERENCES fields(id),
    old_value,
    new_value
);

CREATE TABLE IF NOT EXISTS comments (
    id       INTEGER PRIMARY KEY AUTOINCREMENT,
    event_id INTEGER NOT NULL UNIQUE REFERENCES events(id) ON DELETE CASCADE,
    body     TEXT NOT NULL,
    private  INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS files (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    event_id   INTEGER NOT NULL UNIQUE REFERENCES events(id) ON DELETE CASCADE,
    uid        TEXT NOT NULL UNIQUE,
    name       TEXT NOT NULL,
    size       INTEGER NOT NULL,
    mime       TEXT NOT NULL DEFAULT 'application/octet-stream',
    removed_at INTEGER
);

CREATE TABLE IF NOT EXISTS dependencies (
    issue_id      INTEGER NOT NULL REFERENCES issues(id) ON DELETE CASCADE,
    dependency_id INTEGER NOT NULL REFERENCES issues(id) ON DELETE CASCADE,
    event_id      INTEGER NOT NULL REFERENCES events(id) ON DELETE CASCADE,
    PRIMARY KEY (issue_id, dependency_id)
);

CREATE INDEX IF NOT EXISTS idx_dependencies_target ON dependencies(dependency_id);

CREATE TABLE IF NOT EXISTS related_issues (
    issue_id   INTEGER NOT NULL REFERENCES issues(id) ON DELETE CASCADE,
    related_id INTEGER NOT NULL REFERENCES issues(id) ON DELETE CASCADE,
    event_id   INTEGER NOT NULL REFERENCES events(id) ON DELETE CASCADE,
    PRIMARY KEY (issue_id, related_id)
);

CREATE TABLE IF NOT EXISTS watchers (
    issue_id INTEGER NOT NULL REFERENCES issues(id) ON DELETE CASCADE,
    user_id  INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    PRIMARY KEY (issue_id, user_id)
);

CREATE TABLE IF NOT EXISTS last_reads (
    issue_id INTEGER NOT NULL REFERENCES issues(id) ON DELETE CASCADE,
    user_id  INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    read_at  INTEGER NOT NULL,
    PRIMARY KEY (issue_id, user_id)
);
"""
