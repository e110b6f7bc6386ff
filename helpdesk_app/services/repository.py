# helpdesk_app/services/repository.py
"""
Repository façade over services.db.

All persistence the bot needs goes through a Repository instance so the
conversation layer never writes SQL. Rows come back as plain dicts.

Ticket transitions are conditional updates (`... WHERE status IN (...)`):
the method returns True only when the row actually changed, so two
technicians claiming the same ticket cannot both win.
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from typing import Any, Dict, Iterable, List, Optional

from werkzeug.security import check_password_hash, generate_password_hash

from helpdesk_app.core.models import (
    DEFAULT_DEPARTMENT,
    PARTS_FULFILLED,
    PARTS_OPEN,
    PARTS_PENDING,
    TICKET_ACTIVE,
    TICKET_CANCELLED,
    TICKET_CLOSED,
    TICKET_IN_PROGRESS,
    TICKET_OPEN,
)
from helpdesk_app.core.timefmt import iso_days_ago, now_iso, parse_iso, utcnow
from helpdesk_app.services import db

logger = logging.getLogger(__name__)

MAX_ID = 2 ** 63 - 1


class DuplicateUsernameError(ValueError):
    """A system (web) user with that username already exists."""


def as_id(value: Any) -> Optional[int]:
    """'12' / 12 / '#12' -> 12; anything else, or past a 64-bit INTEGER, -> None."""
    if value is None:
        return None
    text = str(value).strip().lstrip("#")
    if not text.isascii() or not text.isdigit():
        return None
    number = int(text)
    if number > MAX_ID:
        return None
    return number


def _placeholders(values: Iterable[Any]) -> str:
    return ", ".join("?" for _ in values)


class Repository:
    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def get_user(self, identity: str) -> Optional[Dict[str, Any]]:
        return db.fetchone("SELECT * FROM users WHERE identity = ?", [identity])

    def upsert_user(
        self,
        identity: str,
        display_name: Optional[str] = None,
        role: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create the user if missing; otherwise update the given fields only.
        """
        now = now_iso()
        existing = self.get_user(identity)
        if existing is None:
            db.execute(
                """
                INSERT INTO users (identity, display_name, role, created_at, last_activity_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                [identity, display_name, role or "user", now, now],
                commit=True,
            )
        else:
            sets, params = ["last_activity_at = ?"], [now]
            if display_name:
                sets.append("display_name = ?")
                params.append(display_name)
            if role:
                sets.append("role = ?")
                params.append(role)
            params.append(identity)
            db.execute(f"UPDATE users SET {', '.join(sets)} WHERE identity = ?", params, commit=True)
        return self.get_user(identity)

    def set_user_role(self, identity: str, role: str) -> None:
        changed = db.execute(
            "UPDATE users SET role = ?, last_activity_at = ? WHERE identity = ?",
            [role, now_iso(), identity],
            commit=True,
        )
        if not changed:
            self.upsert_user(identity, role=role)
        logger.info("[REPO] Role changed", extra={"identity": identity, "role": role})

    def list_users_by_role(self, role: str) -> List[Dict[str, Any]]:
        return db.fetchall(
            "SELECT * FROM users WHERE role = ? ORDER BY created_at", [role]
        )

    def primary_root_user(self) -> Optional[Dict[str, Any]]:
        return db.fetchone(
            "SELECT * FROM users WHERE role = 'root' ORDER BY created_at, identity LIMIT 1"
        )

    # ------------------------------------------------------------------
    # Tickets
    # ------------------------------------------------------------------

    def create_ticket(
        self,
        *,
        requester_identity: str,
        requester_name: str,
        problem_text: str,
        location: Optional[str] = None,
        equipment: Optional[str] = None,
        remote_access_id: Optional[str] = None,
        department: str = DEFAULT_DEPARTMENT,
    ) -> int:
        now = now_iso()
        ticket_id = db.insert_and_get_id(
            """
            INSERT INTO tickets (
                requester_name, requester_identity, location, equipment,
                remote_access_id, problem_text, status, priority, department,
                created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                requester_name, requester_identity, location, equipment,
                remote_access_id, problem_text, TICKET_OPEN, 0, department,
                now, now,
            ],
        )
        logger.info(
            "[REPO] Ticket created",
            extra={"ticket_id": ticket_id, "requester": requester_identity},
        )
        return ticket_id

    def get_ticket(self, ticket_id: Any) -> Optional[Dict[str, Any]]:
        tid = as_id(ticket_id)
        if tid is None:
            return None
        return db.fetchone("SELECT * FROM tickets WHERE id = ?", [tid])

    def list_open_tickets(self) -> List[Dict[str, Any]]:
        """Open and in-progress tickets, priority first, oldest first."""
        return db.fetchall(
            f"""
            SELECT * FROM tickets
            WHERE status IN ({_placeholders(TICKET_ACTIVE)})
            ORDER BY priority DESC, created_at ASC, id ASC
            """,
            list(TICKET_ACTIVE),
        )

    def list_tickets(self) -> List[Dict[str, Any]]:
        return db.fetchall("SELECT * FROM tickets ORDER BY id")

    def transition_ticket(
        self,
        ticket_id: Any,
        new_status: str,
        from_statuses: Iterable[str],
        **fields: Any,
    ) -> bool:
        """
        Conditional status change: only rows currently in `from_statuses` move.

        Extra keyword fields are written in the same UPDATE. Returns True when
        exactly this call performed the transition.
        """
        tid = as_id(ticket_id)
        if tid is None:
            return False
        allowed = list(from_statuses)
        now = now_iso()
        sets = ["status = ?", "updated_at = ?"]
        params: List[Any] = [new_status, now]
        if new_status == TICKET_CLOSED:
            sets.append("closed_at = ?")
            params.append(now)
        for column, value in fields.items():
            sets.append(f"{column} = ?")
            params.append(value)
        params.append(tid)
        params.extend(allowed)
        changed = db.execute(
            f"UPDATE tickets SET {', '.join(sets)} "
            f"WHERE id = ? AND status IN ({_placeholders(allowed)})",
            params,
            commit=True,
        )
        logger.info(
            "[REPO] Ticket transition",
            extra={"ticket_id": tid, "to": new_status, "from": allowed, "changed": bool(changed)},
        )
        return changed == 1

    def update_ticket_status(
        self,
        ticket_id: Any,
        status: str,
        technician: Optional[str] = None,
    ) -> bool:
        """Unconditional status write (any current status)."""
        fields = {"assigned_technician": technician} if technician else {}
        return self.transition_ticket(
            ticket_id,
            status,
            (TICKET_OPEN, TICKET_IN_PROGRESS, TICKET_CLOSED, TICKET_CANCELLED),
            **fields,
        )

    def claim_ticket(self, ticket_id: Any, technician_name: str, technician_identity: str) -> bool:
        return self.transition_ticket(
            ticket_id,
            TICKET_IN_PROGRESS,
            (TICKET_OPEN,),
            assigned_technician=technician_name,
            assigned_technician_identity=technician_identity,
        )

    def set_ticket_priority(self, ticket_id: Any, flag: bool = True) -> bool:
        """Only non-terminal tickets can change priority."""
        tid = as_id(ticket_id)
        if tid is None:
            return False
        changed = db.execute(
            f"UPDATE tickets SET priority = ?, updated_at = ? "
            f"WHERE id = ? AND status IN ({_placeholders(TICKET_ACTIVE)})",
            [1 if flag else 0, now_iso(), tid, *TICKET_ACTIVE],
            commit=True,
        )
        return changed == 1

    def set_ticket_department(self, ticket_id: Any, department: str) -> bool:
        tid = as_id(ticket_id)
        if tid is None:
            return False
        changed = db.execute(
            "UPDATE tickets SET department = ?, updated_at = ? WHERE id = ?",
            [department, now_iso(), tid],
            commit=True,
        )
        return changed == 1

    def purge_closed_tickets(self, older_than_days: int) -> int:
        """
        Delete closed tickets whose closed_at is older than the window,
        together with their history and parts requests. Returns how many
        tickets were removed.
        """
        cutoff = iso_days_ago(older_than_days)
        rows = db.fetchall(
            "SELECT id FROM tickets WHERE status = ? AND closed_at IS NOT NULL AND closed_at < ?",
            [TICKET_CLOSED, cutoff],
        )
        ids = [r["id"] for r in rows]
        if not ids:
            return 0
        marks = _placeholders(ids)
        with db.transaction() as run:
            run(f"DELETE FROM ticket_history WHERE ticket_id IN ({marks})", ids)
            run(f"DELETE FROM parts_requests WHERE ticket_id IN ({marks})", ids)
            run(f"DELETE FROM tickets WHERE id IN ({marks})", ids)
        logger.info("[REPO] Purged closed tickets", extra={"count": len(ids), "cutoff": cutoff})
        return len(ids)

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def append_history(self, ticket_id: Any, author_identity: Optional[str], text: str, kind: str) -> int:
        return db.insert_and_get_id(
            """
            INSERT INTO ticket_history (ticket_id, author_identity, text, kind, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            [as_id(ticket_id), author_identity, text, kind, now_iso()],
        )

    def list_history(self, ticket_id: Any) -> List[Dict[str, Any]]:
        return db.fetchall(
            "SELECT * FROM ticket_history WHERE ticket_id = ? ORDER BY id",
            [as_id(ticket_id)],
        )

    # ------------------------------------------------------------------
    # Parts requests
    # ------------------------------------------------------------------

    def create_parts_request(
        self,
        *,
        ticket_id: Any,
        technician_identity: str,
        technician_name: str,
        requested_parts: str,
        notes: Optional[str] = None,
    ) -> int:
        now = now_iso()
        return db.insert_and_get_id(
            """
            INSERT INTO parts_requests (
                ticket_id, technician_identity, technician_name, requested_parts,
                notes, status, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [as_id(ticket_id), technician_identity, technician_name, requested_parts,
             notes, PARTS_PENDING, now, now],
        )

    _PARTS_SELECT = """
        SELECT p.*, t.requester_name, t.location, t.equipment
        FROM parts_requests p
        JOIN tickets t ON t.id = p.ticket_id
    """

    def get_parts_request(self, request_id: Any) -> Optional[Dict[str, Any]]:
        rid = as_id(request_id)
        if rid is None:
            return None
        return db.fetchone(self._PARTS_SELECT + " WHERE p.id = ?", [rid])

    def list_parts_requests(self, status: Optional[str] = None) -> List[Dict[str, Any]]:
        if status:
            return db.fetchall(
                self._PARTS_SELECT + " WHERE p.status = ? ORDER BY p.created_at, p.id", [status]
            )
        return db.fetchall(self._PARTS_SELECT + " ORDER BY p.created_at, p.id")

    def update_parts_status(self, request_id: Any, status: str, fulfilled_by: Optional[str] = None) -> bool:
        """Only pending or picking requests move; True when this call moved it."""
        rid = as_id(request_id)
        if rid is None:
            return False
        now = now_iso()
        sets, params = ["status = ?", "updated_at = ?"], [status, now]
        if status == PARTS_FULFILLED:
            sets += ["fulfilled_by = ?", "fulfilled_at = ?"]
            params += [fulfilled_by, now]
        params.append(rid)
        params.extend(PARTS_OPEN)
        changed = db.execute(
            f"UPDATE parts_requests SET {', '.join(sets)} "
            f"WHERE id = ? AND status IN ({_placeholders(PARTS_OPEN)})",
            params,
            commit=True,
        )
        return changed == 1

    # ------------------------------------------------------------------
    # Config
    # ------------------------------------------------------------------

    def get_config(self, key: str) -> Optional[str]:
        row = db.fetchone("SELECT value FROM config WHERE key = ?", [key])
        return row["value"] if row else None

    def set_config(self, key: str, value: Any) -> None:
        text = None if value is None else str(value)
        now = now_iso()
        changed = db.execute(
            "UPDATE config SET value = ?, updated_at = ? WHERE key = ?", [text, now, key], commit=True
        )
        if not changed:
            db.execute(
                "INSERT INTO config (key, value, updated_at) VALUES (?, ?, ?)",
                [key, text, now],
                commit=True,
            )
        logger.info("[REPO] Config updated", extra={"key": key})

    def all_config(self) -> Dict[str, Optional[str]]:
        return {r["key"]: r["value"] for r in db.fetchall("SELECT key, value FROM config ORDER BY key")}

    # ------------------------------------------------------------------
    # System (web) users
    # ------------------------------------------------------------------

    def get_system_user(self, username: str) -> Optional[Dict[str, Any]]:
        return db.fetchone("SELECT * FROM system_users WHERE username = ?", [username])

    def create_system_user(
        self,
        *,
        username: str,
        password: str,
        identity: Optional[str],
        role: str = "admin",
        created_by: Optional[str] = None,
    ) -> int:
        if self.get_system_user(username):
            raise DuplicateUsernameError(username)
        return db.insert_and_get_id(
            """
            INSERT INTO system_users (username, password_hash, identity, role, created_by, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            [username, generate_password_hash(password), identity, role, created_by, now_iso()],
        )

    def verify_system_user(self, username: str, password: str) -> Optional[Dict[str, Any]]:
        user = self.get_system_user(username)
        if not user or not check_password_hash(user["password_hash"], password):
            return None
        self.touch_login(user["id"])
        return user

    def touch_login(self, system_user_id: int) -> None:
        db.execute(
            "UPDATE system_users SET last_login_at = ? WHERE id = ?",
            [now_iso(), system_user_id],
            commit=True,
        )

    # ------------------------------------------------------------------
    # Backups
    # ------------------------------------------------------------------

    def record_backup(self, *, name: str, path: str, size_bytes: int, kind: str, status: str = "completed") -> int:
        return db.insert_and_get_id(
            """
            INSERT INTO backups (name, path, size_bytes, kind, status, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            [name, path, size_bytes, kind, status, now_iso()],
        )

    def list_backups(self, limit: int = 10) -> List[Dict[str, Any]]:
        return db.fetchall("SELECT * FROM backups ORDER BY id DESC LIMIT ?", [limit])

    def delete_backup(self, backup_id: int) -> None:
        db.execute("DELETE FROM backups WHERE id = ?", [backup_id], commit=True)

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def ticket_stats(self) -> Dict[str, Dict[str, int]]:
        by_status = {
            r["status"]: int(r["total"])
            for r in db.fetchall("SELECT status, COUNT(*) AS total FROM tickets GROUP BY status")
        }
        by_technician = {
            r["assigned_technician"]: int(r["total"])
            for r in db.fetchall(
                "SELECT assigned_technician, COUNT(*) AS total FROM tickets "
                "WHERE assigned_technician IS NOT NULL GROUP BY assigned_technician"
            )
        }
        parts_by_status = {
            r["status"]: int(r["total"])
            for r in db.fetchall("SELECT status, COUNT(*) AS total FROM parts_requests GROUP BY status")
        }
        return {
            "by_status": by_status,
            "by_technician": by_technician,
            "parts_by_status": parts_by_status,
        }

    def chart_stats(self) -> Dict[str, Any]:
        """
        Aggregates for the !stats command, computed in Python so the same
        code runs on SQLite and Postgres:

        - per_month: last 12 months, (month "YYYY-MM", total, closed)
        - per_technician: last 30 days, (name, total, closed)
        - parts_by_status: last 30 days
        - mean_resolution_hours: over all closed tickets
        """
        now = utcnow()
        tickets = db.fetchall(
            "SELECT status, assigned_technician, created_at, closed_at FROM tickets"
        )
        month_cutoff = iso_days_ago(365)
        recent_cutoff = iso_days_ago(30)

        months: Dict[str, List[int]] = defaultdict(lambda: [0, 0])
        techs: Dict[str, List[int]] = defaultdict(lambda: [0, 0])
        durations: List[float] = []

        for t in tickets:
            created = parse_iso(t["created_at"])
            if created is None:
                continue
            created_iso = created.isoformat()
            closed = t["status"] == TICKET_CLOSED
            if created_iso >= month_cutoff:
                bucket = months[created.strftime("%Y-%m")]
                bucket[0] += 1
                bucket[1] += int(closed)
            if t["assigned_technician"] and created_iso >= recent_cutoff:
                bucket = techs[t["assigned_technician"]]
                bucket[0] += 1
                bucket[1] += int(closed)
            closed_at = parse_iso(t["closed_at"])
            if closed and closed_at and closed_at <= now:
                durations.append((closed_at - created).total_seconds() / 3600.0)

        parts = db.fetchall(
            "SELECT status FROM parts_requests WHERE created_at >= ?", [recent_cutoff]
        )
        parts_by_status = Counter(p["status"] for p in parts)

        return {
            "per_month": [(m, v[0], v[1]) for m, v in sorted(months.items(), reverse=True)],
            "per_technician": sorted(
                ((name, v[0], v[1]) for name, v in techs.items()), key=lambda x: -x[1]
            ),
            "parts_by_status": dict(parts_by_status),
            "mean_resolution_hours": (sum(durations) / len(durations)) if durations else 0.0,
        }
