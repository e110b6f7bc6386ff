# helpdesk_app/services/schema.py
"""
Database schema (CREATE TABLE IF NOT EXISTS) for both SQLite and Postgres.

init_schema() is idempotent and runs from create_app(); if the database is
unreachable the exception propagates and the process does not start.
"""

from __future__ import annotations

import logging
from typing import List

from werkzeug.security import generate_password_hash

from helpdesk_app.config import cfg
from helpdesk_app.core.timefmt import now_iso
from helpdesk_app.services import db

logger = logging.getLogger(__name__)


def _ddl(pk: str) -> List[str]:
    return [
        """
        CREATE TABLE IF NOT EXISTS users (
            identity TEXT PRIMARY KEY,
            display_name TEXT,
            role TEXT NOT NULL DEFAULT 'user',
            created_at TEXT NOT NULL,
            last_activity_at TEXT
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS tickets (
            id {pk},
            requester_name TEXT NOT NULL,
            requester_identity TEXT NOT NULL,
            location TEXT,
            equipment TEXT,
            remote_access_id TEXT,
            problem_text TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'open',
            assigned_technician TEXT,
            assigned_technician_identity TEXT,
            priority INTEGER NOT NULL DEFAULT 0,
            department TEXT NOT NULL DEFAULT 'TI',
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            closed_at TEXT
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_tickets_status ON tickets (status)",
        f"""
        CREATE TABLE IF NOT EXISTS ticket_history (
            id {pk},
            ticket_id INTEGER NOT NULL REFERENCES tickets(id) ON DELETE CASCADE,
            author_identity TEXT,
            text TEXT NOT NULL,
            kind TEXT NOT NULL,
            created_at TEXT NOT NULL
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_history_ticket ON ticket_history (ticket_id)",
        f"""
        CREATE TABLE IF NOT EXISTS parts_requests (
            id {pk},
            ticket_id INTEGER NOT NULL REFERENCES tickets(id) ON DELETE CASCADE,
            technician_identity TEXT NOT NULL,
            technician_name TEXT NOT NULL,
            requested_parts TEXT NOT NULL,
            notes TEXT,
            status TEXT NOT NULL DEFAULT 'pending',
            fulfilled_by TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            fulfilled_at TEXT
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_parts_status ON parts_requests (status)",
        """
        CREATE TABLE IF NOT EXISTS config (
            key TEXT PRIMARY KEY,
            value TEXT,
            updated_at TEXT NOT NULL
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS system_users (
            id {pk},
            username TEXT NOT NULL UNIQUE,
            password_hash TEXT NOT NULL,
            identity TEXT,
            role TEXT NOT NULL DEFAULT 'admin',
            created_by TEXT,
            created_at TEXT NOT NULL,
            last_login_at TEXT
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS backups (
            id {pk},
            name TEXT NOT NULL,
            path TEXT NOT NULL,
            size_bytes INTEGER NOT NULL DEFAULT 0,
            kind TEXT NOT NULL DEFAULT 'manual',
            status TEXT NOT NULL DEFAULT 'completed',
            created_at TEXT NOT NULL
        )
        """,
    ]


def init_schema() -> None:
    pk = "SERIAL PRIMARY KEY" if db.using_pg() else "INTEGER PRIMARY KEY AUTOINCREMENT"
    db.run_script(_ddl(pk))
    logger.info("[SCHEMA] Tables ensured", extra={"postgres": db.using_pg()})

    if cfg.WEB_ROOT_PASSWORD:
        _seed_web_root(cfg.WEB_ROOT_PASSWORD)


def _seed_web_root(password: str) -> None:
    existing = db.fetchone("SELECT id FROM system_users WHERE username = ?", ["root"])
    if existing:
        return
    db.execute(
        """
        INSERT INTO system_users (username, password_hash, identity, role, created_by, created_at)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        ["root", generate_password_hash(password), None, "root", "bootstrap", now_iso()],
        commit=True,
    )
    logger.info("[SCHEMA] Seeded web root user")
