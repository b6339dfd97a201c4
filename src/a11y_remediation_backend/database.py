"""
SQLite persistence for audits and their WCAG findings.

This module owns the audit lifecycle. An audit is created ``pending``; each
findings submission upserts rows keyed by (audit, wcag_id) and then advances
the status and recomputes the issue counters. A final submission marks the
audit ``complete``; an incremental one moves it to ``in-progress``. Status
never moves backwards.

Every public method opens its own connection and commits on exit, so each
call is atomic on its own. A findings submission uses two calls (upsert, then
recompute) and is not wrapped in a single transaction.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Sequence

from .errors import NotFoundError, RepositoryError, Result, ValidationError
from .models import (
    SQLITE_MAX_INTEGER,
    AuditRecord,
    AuditRef,
    AuditStatus,
    AuditWithFindings,
    FindingInput,
    FindingRecord,
    FindingsSummary,
)
from .utils import Clock, isoformat, parse_isoformat, utc_now

logger = logging.getLogger(__name__)

CRITICAL_SEVERITY = "critical"


def _ensure_db_dir(db_path: Path) -> None:
    """Ensure the database directory exists."""
    db_path.parent.mkdir(parents=True, exist_ok=True)


class AuditRepository:
    """
    SQLite-backed store for audits and findings.

    Audits are never deleted. Findings are returned in insertion order; an
    upsert keeps the row's original position.
    """

    def __init__(self, db_path: Path, clock: Clock = utc_now):
        self.db_path = Path(db_path)
        self._clock = clock
        _ensure_db_dir(self.db_path)
        self._init_db()

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Get a database connection with proper settings."""
        conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS document_audits (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    document_id TEXT NOT NULL,
                    filename TEXT NOT NULL,
                    file_size INTEGER,
                    file_type TEXT,
                    audit_status TEXT NOT NULL DEFAULT 'pending',
                    total_issues INTEGER NOT NULL DEFAULT 0,
                    critical_issues INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    audit_completed_at TEXT
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_audits_document_id
                ON document_audits(document_id)
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS audit_findings (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    audit_id INTEGER NOT NULL REFERENCES document_audits(id),
                    wcag_id TEXT NOT NULL,
                    status TEXT NOT NULL,
                    severity TEXT NOT NULL,
                    notes TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    UNIQUE (audit_id, wcag_id)
                )
            """)

    def create_audit(
        self,
        document_id: str,
        filename: str,
        file_size: Optional[int] = None,
        file_type: Optional[str] = None,
    ) -> Result[AuditRecord]:
        """
        Register a new audit in the ``pending`` state.

        Args:
            document_id: External document identifier supplied by the caller
            filename: Original document filename
            file_size: Size in bytes, if known
            file_type: MIME type, if known

        Returns:
            Result holding the stored AuditRecord, or a ValidationError /
            RepositoryError
        """
        if not document_id or not filename:
            return Result.failure(ValidationError("Missing document_id or filename"))
        if file_size is not None and file_size < 0:
            return Result.failure(ValidationError("file_size must not be negative"))
        if file_size is not None and file_size > SQLITE_MAX_INTEGER:
            return Result.failure(ValidationError(f"file_size must not exceed {SQLITE_MAX_INTEGER}"))

        created_at = self._clock()
        try:
            with self._get_connection() as conn:
                cursor = conn.execute("""
                    INSERT INTO document_audits
                        (document_id, filename, file_size, file_type, audit_status, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                """, (
                    document_id,
                    filename,
                    file_size,
                    file_type,
                    AuditStatus.PENDING.value,
                    isoformat(created_at),
                ))
                audit_id = cursor.lastrowid
        except sqlite3.Error as exc:
            logger.error(f"Create audit failed for {document_id}: {exc}")
            return Result.failure(RepositoryError(f"Create audit failed: {exc}"))

        logger.info(f"Created audit {audit_id} for document {document_id}")
        return Result.success(AuditRecord(
            id=audit_id,
            document_id=document_id,
            filename=filename,
            file_size=file_size,
            file_type=file_type,
            status=AuditStatus.PENDING,
            created_at=created_at,
        ))

    def record_findings(
        self,
        audit_ref: AuditRef,
        findings: Sequence[FindingInput],
        final: bool = True,
    ) -> Result[FindingsSummary]:
        """
        Upsert findings for an audit and advance its lifecycle.

        Findings are written in list order; a repeated (audit, wcag_id) key
        overwrites status, severity and notes. Afterwards the counters are
        recomputed from the stored rows and the status moves to
        ``complete`` (final) or ``in-progress`` (incremental), never backwards.

        Args:
            audit_ref: The audit to attach findings to
            findings: Findings to upsert, at least one
            final: Whether this submission completes the audit

        Returns:
            Result holding a FindingsSummary, or a ValidationError,
            NotFoundError or RepositoryError
        """
        if not findings:
            return Result.failure(ValidationError("Missing results array"))

        try:
            row = self._find_audit_row(audit_ref)
            if row is None:
                return Result.failure(NotFoundError("Audit not found"))
            audit_id = row["id"]

            with self._get_connection() as conn:
                for finding in findings:
                    now = isoformat(self._clock())
                    conn.execute("""
                        INSERT INTO audit_findings
                            (audit_id, wcag_id, status, severity, notes, created_at, updated_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?)
                        ON CONFLICT (audit_id, wcag_id) DO UPDATE SET
                            status = excluded.status,
                            severity = excluded.severity,
                            notes = excluded.notes,
                            updated_at = excluded.updated_at
                    """, (audit_id, finding.wcag_id, finding.status, finding.severity, finding.notes, now, now))

            summary = self._recompute_summary(audit_id, final, updated=len(findings))
        except sqlite3.Error as exc:
            logger.error(f"Recording findings for {audit_ref.describe()} failed: {exc}")
            return Result.failure(RepositoryError(f"Update results failed: {exc}"))

        logger.info(
            f"Recorded {len(findings)} findings for audit {audit_id} "
            f"(status={summary.status.value}, critical={summary.critical_issues})"
        )
        return Result.success(summary)

    def _recompute_summary(self, audit_id: int, final: bool, updated: int) -> FindingsSummary:
        target = AuditStatus.COMPLETE if final else AuditStatus.IN_PROGRESS
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM document_audits WHERE id = ?", (audit_id,)
            ).fetchone()
            status = AuditStatus(row["audit_status"]).advance_to(target)
            completed_at = row["audit_completed_at"]
            if final:
                completed_at = isoformat(self._clock())

            counts = conn.execute("""
                SELECT
                    COUNT(*) AS total,
                    COALESCE(SUM(CASE WHEN LOWER(severity) = ? THEN 1 ELSE 0 END), 0) AS critical
                FROM audit_findings WHERE audit_id = ?
            """, (CRITICAL_SEVERITY, audit_id)).fetchone()

            conn.execute("""
                UPDATE document_audits
                SET audit_status = ?, total_issues = ?, critical_issues = ?, audit_completed_at = ?
                WHERE id = ?
            """, (status.value, counts["total"], counts["critical"], completed_at, audit_id))

        return FindingsSummary(
            audit_id=audit_id,
            document_id=row["document_id"],
            updated=updated,
            findings_count=counts["total"],
            status=status,
            total_issues=counts["total"],
            critical_issues=counts["critical"],
            completed_at=parse_isoformat(completed_at),
        )

    def get_audit_with_findings(self, audit_ref: AuditRef) -> Result[AuditWithFindings]:
        """
        Retrieve an audit and all of its findings in insertion order.

        Returns:
            Result holding AuditWithFindings, or NotFoundError / RepositoryError
        """
        try:
            row = self._find_audit_row(audit_ref)
            if row is None:
                return Result.failure(NotFoundError("Audit not found"))

            with self._get_connection() as conn:
                finding_rows = conn.execute(
                    "SELECT * FROM audit_findings WHERE audit_id = ? ORDER BY id",
                    (row["id"],),
                ).fetchall()
        except sqlite3.Error as exc:
            logger.error(f"Reading {audit_ref.describe()} failed: {exc}")
            return Result.failure(RepositoryError(f"Get audit failed: {exc}"))

        return Result.success(AuditWithFindings(
            audit=self._row_to_audit(row),
            findings=[self._row_to_finding(finding) for finding in finding_rows],
        ))

    def list_audits(self, document_id: Optional[str] = None, limit: int = 100) -> Result[List[AuditRecord]]:
        """
        List audits ordered by creation time (newest first).

        Args:
            document_id: Only return audits for this document
            limit: Maximum number of audits to return
        """
        if limit <= 0:
            return Result.failure(ValidationError("limit must be positive"))
        limit = min(limit, SQLITE_MAX_INTEGER)

        query = "SELECT * FROM document_audits"
        params: list = []
        if document_id:
            query += " WHERE document_id = ?"
            params.append(document_id)
        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)

        try:
            with self._get_connection() as conn:
                rows = conn.execute(query, params).fetchall()
        except sqlite3.Error as exc:
            logger.error(f"Listing audits failed: {exc}")
            return Result.failure(RepositoryError(f"List audits failed: {exc}"))

        return Result.success([self._row_to_audit(row) for row in rows])

    def _find_audit_row(self, audit_ref: AuditRef) -> Optional[sqlite3.Row]:
        # A document id may have been audited more than once; the newest wins.
        if audit_ref.audit_id is not None and not 0 < audit_ref.audit_id <= SQLITE_MAX_INTEGER:
            return None
        with self._get_connection() as conn:
            if audit_ref.audit_id is not None:
                return conn.execute(
                    "SELECT * FROM document_audits WHERE id = ?", (audit_ref.audit_id,)
                ).fetchone()
            return conn.execute(
                "SELECT * FROM document_audits WHERE document_id = ? ORDER BY id DESC LIMIT 1",
                (audit_ref.document_id,),
            ).fetchone()

    def _row_to_audit(self, row: sqlite3.Row) -> AuditRecord:
        return AuditRecord(
            id=row["id"],
            document_id=row["document_id"],
            filename=row["filename"],
            file_size=row["file_size"],
            file_type=row["file_type"],
            status=AuditStatus(row["audit_status"]),
            total_issues=row["total_issues"],
            critical_issues=row["critical_issues"],
            created_at=parse_isoformat(row["created_at"]),
            completed_at=parse_isoformat(row["audit_completed_at"]),
        )

    def _row_to_finding(self, row: sqlite3.Row) -> FindingRecord:
        return FindingRecord(
            wcag_id=row["wcag_id"],
            status=row["status"],
            severity=row["severity"],
            notes=row["notes"],
            created_at=parse_isoformat(row["created_at"]),
            updated_at=parse_isoformat(row["updated_at"]),
        )
