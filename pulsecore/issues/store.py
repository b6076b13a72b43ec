"""
Issue Store - SQLite Backend

Persistence boundary for the correlation pipeline. ``Store`` is the narrow
interface the pipeline depends on; ``IssueStore`` implements it on SQLite.
"""

import json
import logging
import sqlite3
import threading
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

from pulsecore import config
from pulsecore.apps import App
from pulsecore.errors import FingerprintConflictError, IssueNotFoundError, StoreError
from pulsecore.events.models import Event, EventInput
from pulsecore.utils.time import ensure_aware, to_iso, utcnow

from .models import (
    EventRefs,
    Issue,
    IssueCounts,
    IssueInput,
    IssuePatch,
    IssueRouting,
    IssueStatus,
    IssueTimestamps,
    IssueType,
    ReportedBy,
    Severity,
)

logger = logging.getLogger(__name__)


class Store(ABC):
    """
    Persistence operations consumed by the pipeline.

    Implementations must make create_issue conditional on the
    (app_id, environment, primary_fingerprint) slot being free among
    non-resolved issues, raising FingerprintConflictError otherwise, and must
    apply add_event_to_issue / update_issue atomically.
    """

    @abstractmethod
    def get_app(self, app_id: str) -> Optional[App]:
        ...

    @abstractmethod
    def create_event(self, data: EventInput, fingerprint: Optional[str] = None) -> Event:
        ...

    @abstractmethod
    def get_events(self, event_ids: Sequence[str]) -> List[Event]:
        ...

    @abstractmethod
    def create_issue(self, data: IssueInput) -> Issue:
        ...

    @abstractmethod
    def find_issue_by_fingerprint(
        self, app_id: str, environment: str, fingerprint: str
    ) -> Optional[Issue]:
        ...

    @abstractmethod
    def get_issue(self, issue_id: str) -> Optional[Issue]:
        ...

    @abstractmethod
    def add_event_to_issue(self, issue_id: str, event_id: str) -> None:
        ...

    @abstractmethod
    def update_issue(self, issue_id: str, patch: IssuePatch) -> None:
        ...

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Group several calls into one atomic unit. No-op by default."""
        yield


class IssueStore(Store):
    """
    SQLite-based store for apps, events and issues.

    Features:
    - Conditional issue creation backed by a partial unique index on open
      fingerprints
    - Re-entrant write transactions (BEGIN IMMEDIATE) on a per-thread
      connection, so a whole create-or-attach decision commits or rolls back
      as one unit
    - Queries by app, environment, status, severity and assignee

    Example:
        store = IssueStore("/tmp/pulse.db")

        with store.transaction():
            event = store.create_event(event_input, fingerprint="ab12...")
            issue = store.find_issue_by_fingerprint("app-1", "prod", "ab12...")
            if issue:
                store.add_event_to_issue(issue.id, event.id)
    """

    def __init__(self, db_path: Optional[str] = None, timeout: Optional[float] = None):
        """
        Initialize the store.

        Args:
            db_path: Path to SQLite database file
            timeout: Seconds to wait for a competing writer
        """
        self.db_path = Path(db_path or config.DB_PATH)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.timeout = config.DB_TIMEOUT if timeout is None else timeout
        self._local = threading.local()
        self._init_db()
        logger.info(f"IssueStore initialized at {self.db_path}")

    # ------------------------------------------------------------------
    # Connection / transaction handling
    # ------------------------------------------------------------------

    def _conn(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.timeout,
                isolation_level=None,
                check_same_thread=False,
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            self._local.conn = conn
            self._local.depth = 0
        return conn

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """
        Run the enclosed calls in one write transaction.

        Nested calls join the outermost transaction. Any exception rolls the
        whole unit back; sqlite errors surface as StoreError.
        """
        conn = self._conn()
        if self._local.depth > 0:
            self._local.depth += 1
            try:
                yield
            finally:
                self._local.depth -= 1
            return

        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            raise StoreError(f"Could not begin transaction: {e}") from e

        self._local.depth = 1
        try:
            yield
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            self._rollback(conn)
            raise StoreError(str(e)) from e
        except BaseException:
            self._rollback(conn)
            raise
        finally:
            self._local.depth = 0

    def _rollback(self, conn: sqlite3.Connection) -> None:
        try:
            conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            logger.warning(f"Rollback failed: {e}")

    def _query(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        try:
            return self._conn().execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e

    def close(self) -> None:
        """Close this thread's connection."""
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None

    def _init_db(self):
        """Initialize database schema."""
        conn = self._conn()
        conn.execute("PRAGMA journal_mode = WAL")
        with self.transaction():
            conn.execute("""
                CREATE TABLE IF NOT EXISTS apps (
                    app_id TEXT PRIMARY KEY,
                    data TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS events (
                    id TEXT PRIMARY KEY,
                    app_id TEXT NOT NULL,
                    environment TEXT NOT NULL,
                    event_type TEXT NOT NULL,
                    timestamp TEXT NOT NULL,
                    user_id TEXT,
                    fingerprint TEXT,
                    data TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS issues (
                    id TEXT PRIMARY KEY,
                    app_id TEXT NOT NULL,
                    environment TEXT NOT NULL,
                    status TEXT NOT NULL,
                    severity TEXT NOT NULL,
                    issue_type TEXT NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT,
                    primary_fingerprint TEXT,
                    occurrences_total INTEGER NOT NULL,
                    occurrences_24h INTEGER NOT NULL,
                    unique_users_24h_est INTEGER NOT NULL,
                    created_at TEXT NOT NULL,
                    last_seen_at TEXT NOT NULL,
                    assigned_to TEXT,
                    tags TEXT,
                    reported_by TEXT
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS issue_events (
                    issue_id TEXT NOT NULL REFERENCES issues(id),
                    event_id TEXT NOT NULL UNIQUE REFERENCES events(id),
                    position INTEGER NOT NULL,
                    PRIMARY KEY (issue_id, position)
                )
            """)

            # At most one open issue per fingerprint
            conn.execute("""
                CREATE UNIQUE INDEX IF NOT EXISTS idx_open_fingerprint
                ON issues(app_id, environment, primary_fingerprint)
                WHERE primary_fingerprint IS NOT NULL AND status != 'resolved'
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_status ON issues(status)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_app_env ON issues(app_id, environment)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_last_seen ON issues(last_seen_at)")

    # ------------------------------------------------------------------
    # Apps
    # ------------------------------------------------------------------

    def save_app(self, app: App) -> None:
        with self.transaction():
            self._conn().execute(
                "INSERT OR REPLACE INTO apps (app_id, data) VALUES (?, ?)",
                (app.app_id, json.dumps(app.to_dict())),
            )
        logger.debug(f"Saved app {app.app_id}")

    def get_app(self, app_id: str) -> Optional[App]:
        rows = self._query("SELECT data FROM apps WHERE app_id = ?", (app_id,))
        return App.from_dict(json.loads(rows[0]["data"])) if rows else None

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def create_event(self, data: EventInput, fingerprint: Optional[str] = None) -> Event:
        event = Event.from_input(str(uuid.uuid4()), data, fingerprint=fingerprint)
        with self.transaction():
            self._conn().execute("""
                INSERT INTO events (id, app_id, environment, event_type, timestamp,
                                    user_id, fingerprint, data)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                event.id,
                event.app_id,
                event.environment,
                event.event_type.value,
                to_iso(event.timestamp),
                event.user.user_id,
                event.fingerprint,
                json.dumps(event.to_dict()),
            ))
        logger.debug(f"Saved event {event.id} ({event.event_type.value})")
        return event

    def get_event(self, event_id: str) -> Optional[Event]:
        rows = self._query("SELECT data FROM events WHERE id = ?", (event_id,))
        return Event.from_dict(json.loads(rows[0]["data"])) if rows else None

    def get_events(self, event_ids: Sequence[str]) -> List[Event]:
        """Fetch events, preserving the order of ``event_ids``."""
        if not event_ids:
            return []
        found: Dict[str, Event] = {}
        ids = list(event_ids)
        # Stay below SQLITE_MAX_VARIABLE_NUMBER
        for start in range(0, len(ids), 500):
            chunk = ids[start:start + 500]
            placeholders = ",".join("?" * len(chunk))
            rows = self._query(
                f"SELECT data FROM events WHERE id IN ({placeholders})", chunk
            )
            for row in rows:
                event = Event.from_dict(json.loads(row["data"]))
                found[event.id] = event
        return [found[event_id] for event_id in ids if event_id in found]

    # ------------------------------------------------------------------
    # Issues
    # ------------------------------------------------------------------

    def create_issue(self, data: IssueInput) -> Issue:
        """
        Create an issue unless an open one already owns its fingerprint.

        Raises:
            FingerprintConflictError: the fingerprint slot is taken
        """
        issue = data.build()
        with self.transaction():
            conn = self._conn()
            try:
                conn.execute("""
                    INSERT INTO issues (
                        id, app_id, environment, status, severity, issue_type,
                        title, description, primary_fingerprint,
                        occurrences_total, occurrences_24h, unique_users_24h_est,
                        created_at, last_seen_at, assigned_to, tags, reported_by
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, self._issue_params(issue))
            except sqlite3.IntegrityError as e:
                if issue.primary_fingerprint is not None:
                    raise FingerprintConflictError(
                        issue.app_id, issue.environment, issue.primary_fingerprint
                    ) from e
                raise StoreError(str(e)) from e

            conn.execute(
                "INSERT INTO issue_events (issue_id, event_id, position) VALUES (?, ?, 0)",
                (issue.id, data.initial_event_id),
            )

        logger.debug(f"Saved issue {issue.id}")
        return issue

    def get_issue(self, issue_id: str) -> Optional[Issue]:
        rows = self._query("SELECT * FROM issues WHERE id = ?", (issue_id,))
        return self._row_to_issue(rows[0]) if rows else None

    def find_issue_by_fingerprint(
        self, app_id: str, environment: str, fingerprint: str
    ) -> Optional[Issue]:
        rows = self._query("""
            SELECT * FROM issues
            WHERE app_id = ? AND environment = ? AND primary_fingerprint = ?
              AND status != 'resolved'
            LIMIT 1
        """, (app_id, environment, fingerprint))
        return self._row_to_issue(rows[0]) if rows else None

    def add_event_to_issue(self, issue_id: str, event_id: str) -> None:
        """Append an event reference and bump occurrences_total by one."""
        with self.transaction():
            conn = self._conn()
            row = conn.execute(
                "SELECT COUNT(*) AS n FROM issue_events WHERE issue_id = ?", (issue_id,)
            ).fetchone()
            exists = conn.execute(
                "SELECT 1 FROM issues WHERE id = ?", (issue_id,)
            ).fetchone()
            if not exists:
                raise IssueNotFoundError(issue_id)

            try:
                conn.execute(
                    "INSERT INTO issue_events (issue_id, event_id, position) VALUES (?, ?, ?)",
                    (issue_id, event_id, row["n"]),
                )
            except sqlite3.IntegrityError as e:
                raise StoreError(f"Event {event_id} is already attached to an issue") from e

            conn.execute(
                "UPDATE issues SET occurrences_total = occurrences_total + 1 WHERE id = ?",
                (issue_id,),
            )
        logger.debug(f"Attached event {event_id} to issue {issue_id}")

    def update_issue(self, issue_id: str, patch: IssuePatch) -> None:
        """
        Merge ``patch`` into the stored issue.

        Raises:
            IssueNotFoundError: no such issue
            FingerprintConflictError: reopening would create a second open
                issue for the same fingerprint
        """
        if patch.is_empty():
            return

        with self.transaction():
            current = self.get_issue(issue_id)
            if current is None:
                raise IssueNotFoundError(issue_id)
            updated = patch.apply_to(current)
            try:
                self._conn().execute("""
                    UPDATE issues SET
                        status = ?, severity = ?, title = ?, description = ?,
                        occurrences_24h = ?, unique_users_24h_est = ?,
                        last_seen_at = ?, assigned_to = ?, tags = ?
                    WHERE id = ?
                """, (
                    updated.status.value,
                    updated.severity.value,
                    updated.title,
                    updated.description,
                    updated.counts.occurrences_24h,
                    updated.counts.unique_users_24h_est,
                    to_iso(updated.timestamps.last_seen_at),
                    updated.routing.assigned_to if updated.routing else None,
                    json.dumps(updated.tags),
                    issue_id,
                ))
            except sqlite3.IntegrityError as e:
                raise FingerprintConflictError(
                    updated.app_id, updated.environment, updated.primary_fingerprint or ""
                ) from e
        logger.debug(f"Updated issue {issue_id}")

    def list_issues(
        self,
        app_id: Optional[str] = None,
        environment: Optional[str] = None,
        status: Optional[IssueStatus] = None,
        severity: Optional[Severity] = None,
        assigned_to: Optional[str] = None,
        exclude_resolved: bool = False,
        limit: Optional[int] = 100,
    ) -> List[Issue]:
        """List issues, most recently seen first. ``limit=None`` returns every match."""
        clauses = []
        params: List[Any] = []
        for column, value in (
            ("app_id", app_id),
            ("environment", environment),
            ("status", status.value if status else None),
            ("severity", severity.value if severity else None),
            ("assigned_to", assigned_to),
        ):
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(value)

        if exclude_resolved:
            clauses.append("status != ?")
            params.append(IssueStatus.RESOLVED.value)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        sql = f"SELECT * FROM issues {where} ORDER BY last_seen_at DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        rows = self._query(sql, params)
        return [self._row_to_issue(row) for row in rows]

    def get_stats(self) -> Dict[str, Any]:
        """Get issue statistics."""
        total = self._query("SELECT COUNT(*) AS count FROM issues")[0]["count"]

        by_status = {
            row["status"]: row["count"]
            for row in self._query(
                "SELECT status, COUNT(*) AS count FROM issues GROUP BY status"
            )
        }
        by_severity = {
            row["severity"]: row["count"]
            for row in self._query(
                "SELECT severity, COUNT(*) AS count FROM issues GROUP BY severity"
            )
        }

        cutoff = to_iso(utcnow() - timedelta(hours=24))
        created_24h = self._query(
            "SELECT COUNT(*) AS count FROM issues WHERE created_at >= ?", (cutoff,)
        )[0]["count"]
        unassigned = self._query(
            "SELECT COUNT(*) AS count FROM issues WHERE assigned_to IS NULL AND status != 'resolved'"
        )[0]["count"]

        return {
            "total": total,
            "by_status": by_status,
            "by_severity": by_severity,
            "created_24h": created_24h,
            "unassigned_open": unassigned,
        }

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    def _issue_params(self, issue: Issue) -> tuple:
        return (
            issue.id,
            issue.app_id,
            issue.environment,
            issue.status.value,
            issue.severity.value,
            issue.issue_type.value,
            issue.title,
            issue.description,
            issue.primary_fingerprint,
            issue.counts.occurrences_total,
            issue.counts.occurrences_24h,
            issue.counts.unique_users_24h_est,
            to_iso(issue.timestamps.created_at),
            to_iso(issue.timestamps.last_seen_at),
            issue.routing.assigned_to if issue.routing else None,
            json.dumps(issue.tags),
            json.dumps(
                {"user_id": issue.reported_by.user_id, "email": issue.reported_by.email}
            ) if issue.reported_by else None,
        )

    def _row_to_issue(self, row: sqlite3.Row) -> Issue:
        """Convert database row to Issue object."""
        refs = self._query(
            "SELECT event_id FROM issue_events WHERE issue_id = ? ORDER BY position",
            (row["id"],),
        )
        reported_by = json.loads(row["reported_by"]) if row["reported_by"] else None
        return Issue(
            id=row["id"],
            app_id=row["app_id"],
            environment=row["environment"],
            status=IssueStatus(row["status"]),
            severity=Severity(row["severity"]),
            issue_type=IssueType(row["issue_type"]),
            title=row["title"],
            description=row["description"] or "",
            primary_fingerprint=row["primary_fingerprint"],
            event_refs=EventRefs(r["event_id"] for r in refs),
            counts=IssueCounts(
                occurrences_total=row["occurrences_total"],
                occurrences_24h=row["occurrences_24h"],
                unique_users_24h_est=row["unique_users_24h_est"],
            ),
            timestamps=IssueTimestamps(
                created_at=ensure_aware(row["created_at"]),
                last_seen_at=ensure_aware(row["last_seen_at"]),
            ),
            routing=IssueRouting(row["assigned_to"]) if row["assigned_to"] else None,
            tags=json.loads(row["tags"]) if row["tags"] else [],
            reported_by=(
                ReportedBy(reported_by["user_id"], reported_by.get("email"))
                if reported_by else None
            ),
        )
