"""Append-only, hash-chained deployment ledger backed by SQLite.

Every stack state transition of every run is appended here, and every
finished run is summarized with the order in which its stacks succeeded.
Teardown reads that order back: the deletion order of a stack set is the
exact reverse of its last successful creation order.

Design:
- Append-only: no update, no delete.
- Hash-chained per run: each entry includes SHA-256 of the previous entry.
- WAL journal mode for concurrent readers.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path

from stackforge.core.errors import LedgerIntegrityError
from stackforge.core.hasher import compute_entry_hash
from stackforge.models.ledger import LedgerEntry
from stackforge.models.reports import DeploymentReport

# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_LEDGER = """
CREATE TABLE IF NOT EXISTS deployment_ledger (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    entry_id            TEXT NOT NULL UNIQUE,
    run_id              TEXT NOT NULL,
    stack_set           TEXT NOT NULL,
    environment         TEXT NOT NULL,
    operation           TEXT NOT NULL,
    stack_name          TEXT NOT NULL,
    state_transition    TEXT NOT NULL,
    timestamp_utc       TEXT NOT NULL,
    input_hash          TEXT NOT NULL DEFAULT '',
    template_revision   TEXT NOT NULL DEFAULT '',
    detail              TEXT NOT NULL DEFAULT '',
    previous_entry_hash TEXT NOT NULL DEFAULT '',
    entry_hash          TEXT NOT NULL UNIQUE
);
"""

_CREATE_RUNS = """
CREATE TABLE IF NOT EXISTS deployment_runs (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    run_id          TEXT NOT NULL UNIQUE,
    stack_set       TEXT NOT NULL,
    environment     TEXT NOT NULL,
    operation       TEXT NOT NULL,
    succeeded       INTEGER NOT NULL,
    order_json      TEXT NOT NULL DEFAULT '[]',
    finished_at     TEXT NOT NULL
);
"""

_CREATE_IDX_RUN = """
CREATE INDEX IF NOT EXISTS idx_ledger_run ON deployment_ledger(run_id, id);
"""

_CREATE_IDX_SET = """
CREATE INDEX IF NOT EXISTS idx_runs_set ON deployment_runs(stack_set, environment, id);
"""

_COLUMNS = (
    "entry_id, run_id, stack_set, environment, operation, stack_name, "
    "state_transition, timestamp_utc, input_hash, template_revision, detail, "
    "previous_entry_hash, entry_hash"
)


class DeploymentLedger:
    """Append-only record of deployment runs.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. Created if it does not exist.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._write_lock = threading.Lock()
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(_CREATE_LEDGER)
            conn.execute(_CREATE_RUNS)
            conn.execute(_CREATE_IDX_RUN)
            conn.execute(_CREATE_IDX_SET)
            conn.commit()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def append(self, entry: LedgerEntry) -> LedgerEntry:
        """Seal *entry* onto its run's hash chain and persist it."""
        with self._write_lock:
            previous_hash = self._get_latest_hash(entry.run_id)
            entry_dict = entry.model_dump(mode="json")
            entry_dict["previous_entry_hash"] = previous_hash
            entry_dict["entry_hash"] = ""
            sealed = entry.model_copy(
                update={
                    "previous_entry_hash": previous_hash,
                    "entry_hash": compute_entry_hash(entry_dict),
                }
            )
            self._insert(sealed)
        return sealed

    def _insert(self, entry: LedgerEntry) -> None:
        with self._connect() as conn:
            conn.execute(
                f"INSERT INTO deployment_ledger ({_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    entry.entry_id,
                    entry.run_id,
                    entry.stack_set,
                    entry.environment,
                    entry.operation,
                    entry.stack_name,
                    entry.state_transition,
                    entry.timestamp_utc.isoformat()
                    if isinstance(entry.timestamp_utc, datetime)
                    else entry.timestamp_utc,
                    entry.input_hash,
                    entry.template_revision,
                    entry.detail,
                    entry.previous_entry_hash,
                    entry.entry_hash,
                ),
            )
            conn.commit()

    def record_run(self, report: DeploymentReport, completion_order: list[str]) -> None:
        """Summarize a finished run; *completion_order* lists stacks as they succeeded."""
        finished = report.finished_at or datetime.now().astimezone()
        with self._write_lock, self._connect() as conn:
            conn.execute(
                "INSERT INTO deployment_runs "
                "(run_id, stack_set, environment, operation, succeeded, order_json, finished_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    report.run_id,
                    report.stack_set,
                    report.environment,
                    report.operation,
                    1 if report.succeeded else 0,
                    json.dumps(completion_order),
                    finished.isoformat(),
                ),
            )
            conn.commit()

    def _get_latest_hash(self, run_id: str) -> str:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT entry_hash FROM deployment_ledger WHERE run_id = ? "
                "ORDER BY id DESC LIMIT 1",
                (run_id,),
            ).fetchone()
        return row[0] if row else ""

    # ------------------------------------------------------------------
    # Query methods (read-only)
    # ------------------------------------------------------------------

    def get_run_entries(self, run_id: str) -> list[LedgerEntry]:
        """Return all entries for a run, ordered chronologically."""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM deployment_ledger WHERE run_id = ? ORDER BY id ASC",
                (run_id,),
            ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def get_stack_history(self, run_id: str, stack_name: str) -> list[LedgerEntry]:
        return [e for e in self.get_run_entries(run_id) if e.stack_name == stack_name]

    def get_all_run_ids(self) -> list[str]:
        """Return all run_ids, most recent first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT run_id FROM deployment_ledger GROUP BY run_id ORDER BY MAX(id) DESC"
            ).fetchall()
        return [row[0] for row in rows]

    def last_creation_order(self, stack_set: str, environment: str) -> list[str] | None:
        """Stacks in the order they succeeded in the last successful create/update."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT order_json FROM deployment_runs "
                "WHERE stack_set = ? AND environment = ? AND succeeded = 1 "
                "AND operation IN ('create', 'update') "
                "ORDER BY id DESC LIMIT 1",
                (stack_set, environment),
            ).fetchone()
        return json.loads(row[0]) if row else None

    # ------------------------------------------------------------------
    # Chain verification
    # ------------------------------------------------------------------

    def verify_chain(self, run_id: str) -> bool:
        """Recompute every entry hash of a run and check the links.

        Returns True if the chain is valid, raises LedgerIntegrityError otherwise.
        """
        prev_hash = ""
        for entry in self.get_run_entries(run_id):
            if entry.previous_entry_hash != prev_hash:
                raise LedgerIntegrityError(
                    f"Chain broken at entry {entry.entry_id}: "
                    f"expected previous_hash={prev_hash!r}, "
                    f"got {entry.previous_entry_hash!r}"
                )
            expected_hash = compute_entry_hash(entry.model_dump(mode="json"))
            if entry.entry_hash != expected_hash:
                raise LedgerIntegrityError(
                    f"Tampered entry {entry.entry_id}: "
                    f"expected hash={expected_hash!r}, got {entry.entry_hash!r}"
                )
            prev_hash = entry.entry_hash
        return True

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_entry(row: tuple) -> LedgerEntry:
        (
            entry_id,
            run_id,
            stack_set,
            environment,
            operation,
            stack_name,
            state_transition,
            timestamp_utc,
            input_hash,
            template_revision,
            detail,
            previous_entry_hash,
            entry_hash,
        ) = row
        return LedgerEntry(
            entry_id=entry_id,
            run_id=run_id,
            stack_set=stack_set,
            environment=environment,
            operation=operation,
            stack_name=stack_name,
            state_transition=state_transition,
            timestamp_utc=timestamp_utc,
            input_hash=input_hash,
            template_revision=template_revision,
            detail=detail,
            previous_entry_hash=previous_entry_hash,
            entry_hash=entry_hash,
        )
