# helpdesk_app/services/maintenance.py
"""
Housekeeping jobs: retention purge, database backups and CSV export.

They run three ways: the !backup command, the Flask CLI
(`flask --app wsgi cleanup|backup|export`) and MaintenanceScheduler, a
daemon thread started by create_app().
"""
from __future__ import annotations

import csv
import json
import logging
import os
import sqlite3
import threading
from typing import Any, Dict, Optional

from helpdesk_app.config import settings_value
from helpdesk_app.core.timefmt import utcnow
from helpdesk_app.services import db

logger = logging.getLogger(__name__)

MAX_BACKUPS = 10

EXPORT_COLUMNS = (
    "id", "requester_name", "requester_identity", "location", "equipment",
    "remote_access_id", "problem_text", "status", "assigned_technician",
    "priority", "department", "created_at", "updated_at", "closed_at",
)


def _stamp() -> str:
    return utcnow().strftime("%Y-%m-%dT%H-%M-%S-%f")


def purge_expired_tickets(repo, days: Optional[int] = None) -> int:
    """Delete closed tickets past the retention window. Returns how many went."""
    days = days if days is not None else settings_value(repo, "retention_days", 365)
    removed = repo.purge_closed_tickets(days)
    logger.info("[MAINT] Retention purge done", extra={"days": days, "removed": removed})
    return removed


def _rotate_backups(repo, keep: int = MAX_BACKUPS) -> None:
    for old in repo.list_backups(limit=1000)[keep:]:
        try:
            if old.get("path") and os.path.exists(old["path"]):
                os.remove(old["path"])
        except OSError:
            logger.warning("[MAINT] Could not delete old backup file", extra={"path": old.get("path")})
        repo.delete_backup(old["id"])


def create_backup(repo, kind: str = "manual") -> Dict[str, Any]:
    """
    SQLite: online copy of the database file (sqlite3 backup API).
    Postgres: JSON dump of every table, since pg_dump is not assumed to be around.

    Records the backup row and keeps only the newest MAX_BACKUPS.
    """
    backup_dir = settings_value(repo, "backup_path", "./backups")
    os.makedirs(backup_dir, exist_ok=True)

    source = db.sqlite_path()
    if source:
        name = f"backup_{_stamp()}.db"
        path = os.path.join(backup_dir, name)
        src = sqlite3.connect(source)
        dst = sqlite3.connect(path)
        try:
            src.backup(dst)
        finally:
            dst.close()
            src.close()
    else:
        name = f"backup_{_stamp()}.json"
        path = os.path.join(backup_dir, name)
        dump = {
            table: db.fetchall(f"SELECT * FROM {table}")
            for table in ("users", "tickets", "ticket_history", "parts_requests", "config")
        }
        with open(path, "w", encoding="utf-8") as fh:
            json.dump(dump, fh, ensure_ascii=False, default=str)

    size = os.path.getsize(path)
    repo.record_backup(name=name, path=path, size_bytes=size, kind=kind)
    _rotate_backups(repo)
    logger.info("[MAINT] Backup created", extra={"backup_name": name, "size_bytes": size, "kind": kind})
    return {"name": name, "path": path, "size_bytes": size, "kind": kind}


def export_tickets_csv(repo) -> str:
    """Write every ticket to <export_path>/tickets_<stamp>.csv and return the path."""
    export_dir = settings_value(repo, "export_path", "./exports")
    os.makedirs(export_dir, exist_ok=True)
    path = os.path.join(export_dir, f"tickets_{_stamp()}.csv")

    tickets = repo.list_tickets()
    with open(path, "w", newline="", encoding="utf-8") as fh:
        writer = csv.DictWriter(fh, fieldnames=EXPORT_COLUMNS, extrasaction="ignore")
        writer.writeheader()
        for ticket in tickets:
            writer.writerow(ticket)

    logger.info("[MAINT] Tickets exported", extra={"path": path, "rows": len(tickets)})
    return path


class MaintenanceScheduler:
    """
    Daemon thread that wakes up periodically and runs:

    - the retention purge once every 24 h;
    - an automatic backup every `backup_interval_hours` while `auto_backup` is on.

    Settings are re-read on every tick, so !config changes apply without a restart.
    """

    PURGE_INTERVAL_SECONDS = 24 * 3600

    def __init__(self, repo, *, tick_seconds: int = 300) -> None:
        self.repo = repo
        self.tick_seconds = tick_seconds
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._last_purge: Optional[float] = None
        self._last_backup: Optional[float] = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self._run, name="maintenance", daemon=True)
        self._thread.start()
        logger.info("[MAINT] Scheduler started", extra={"tick_seconds": self.tick_seconds})

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=5)

    def run_pending(self, now: Optional[float] = None) -> Dict[str, bool]:
        """One scheduler tick. Returns which jobs ran."""
        now = now if now is not None else utcnow().timestamp()
        ran = {"purge": False, "backup": False}

        if self._last_purge is None or now - self._last_purge >= self.PURGE_INTERVAL_SECONDS:
            purge_expired_tickets(self.repo)
            self._last_purge = now
            ran["purge"] = True

        if settings_value(self.repo, "auto_backup", True):
            interval = int(settings_value(self.repo, "backup_interval_hours", 24)) * 3600
            if self._last_backup is None:
                # First tick only arms the timer; no backup right at boot.
                self._last_backup = now
            elif now - self._last_backup >= interval:
                create_backup(self.repo, kind="auto")
                self._last_backup = now
                ran["backup"] = True
        return ran

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.run_pending()
            except Exception:
                logger.exception("[MAINT] Scheduled job failed")
            self._stop.wait(self.tick_seconds)
