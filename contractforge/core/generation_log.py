"""Append-only, hash-chained generation log backed by SQLite.

One row per generation attempt that produced a document.  The download
path reads the latest successful row for a provider/template pair and
re-derives the storage keys from it, so rows are never updated.

- Append-only: ``append()`` and ``clear()`` only ever insert.
- Clearing a record inserts a tombstone into ``cleared_record``; cleared
  records drop out of every query but stay in the chain.
- Hash-chained: each row seals the hash of the row before it.
- WAL journal mode; the connection may be used from worker threads.
"""

from __future__ import annotations

import sqlite3
import threading
import uuid
from collections.abc import Iterable
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from contractforge.core.hasher import compute_record_hash
from contractforge.models.contracts import ContractStatus, GeneratedContract


# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_LOG = """
CREATE TABLE IF NOT EXISTS generation_log (
    id                    INTEGER PRIMARY KEY AUTOINCREMENT,
    record_id             TEXT NOT NULL UNIQUE,
    provider_id           TEXT NOT NULL,
    template_id           TEXT NOT NULL,
    contract_year         TEXT NOT NULL,
    status                TEXT NOT NULL,
    generated_at          TEXT NOT NULL,
    file_name             TEXT NOT NULL DEFAULT '',
    permanent_url         TEXT NOT NULL DEFAULT '',
    file_hash             TEXT NOT NULL DEFAULT '',
    error                 TEXT NOT NULL DEFAULT '',
    previous_record_hash  TEXT NOT NULL DEFAULT '',
    record_hash           TEXT NOT NULL UNIQUE
);
"""

_CREATE_IDX_PAIR = """
CREATE INDEX IF NOT EXISTS idx_provider_template
    ON generation_log(provider_id, template_id, id);
"""

_CREATE_CLEARED = """
CREATE TABLE IF NOT EXISTS cleared_record (
    record_id   TEXT PRIMARY KEY REFERENCES generation_log(record_id),
    cleared_at  TEXT NOT NULL
);
"""

_LIVE = "record_id NOT IN (SELECT record_id FROM cleared_record)"

_COLUMNS = (
    "record_id, provider_id, template_id, contract_year, status, generated_at, "
    "file_name, permanent_url, file_hash, error, previous_record_hash, record_hash"
)


class LogIntegrityError(RuntimeError):
    """Raised when the hash chain is broken."""


class RecordNotFoundError(LookupError):
    """No live record carries the requested ``record_id``."""

    def __init__(self, record_id: str) -> None:
        super().__init__(f"No live generation record {record_id}")
        self.record_id = record_id


class LogPage(BaseModel):
    model_config = ConfigDict(frozen=True)

    items: list[GeneratedContract]
    next_token: str | None = None


class GenerationLog:
    """Append-only record of generated contracts.

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
            conn.execute(_CREATE_LOG)
            conn.execute(_CREATE_IDX_PAIR)
            conn.execute(_CREATE_CLEARED)
            conn.commit()

    # ------------------------------------------------------------------
    # Append
    # ------------------------------------------------------------------

    def append(self, contract: GeneratedContract) -> GeneratedContract:
        """Seal and persist one record; returns it with ``record_id`` set."""
        if not contract.record_id:
            contract = contract.model_copy(update={"record_id": uuid.uuid4().hex})

        with self._write_lock, self._connect() as conn:
            row = conn.execute(
                "SELECT record_hash FROM generation_log ORDER BY id DESC LIMIT 1"
            ).fetchone()
            previous_hash = row[0] if row else ""
            record_hash = self._seal(contract, previous_hash)
            conn.execute(
                f"INSERT INTO generation_log ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    contract.record_id,
                    contract.provider_id,
                    contract.template_id,
                    contract.contract_year,
                    contract.status.value,
                    contract.generated_at,
                    contract.file_name,
                    contract.permanent_url,
                    contract.file_hash,
                    contract.error,
                    previous_hash,
                    record_hash,
                ),
            )
            conn.commit()
        return contract

    @staticmethod
    def _seal(contract: GeneratedContract, previous_hash: str) -> str:
        record = contract.model_dump(mode="json")
        record["previous_record_hash"] = previous_hash
        return compute_record_hash(record)

    # ------------------------------------------------------------------
    # Clear
    # ------------------------------------------------------------------

    def clear(self, record_id: str, cleared_at: str) -> None:
        """Mark one record as cleared so its pair reads as not generated.

        Raises ``RecordNotFoundError`` when the record is unknown or was
        already cleared.
        """
        with self._write_lock, self._connect() as conn:
            row = conn.execute(
                f"SELECT 1 FROM generation_log WHERE record_id = ? AND {_LIVE}", (record_id,)
            ).fetchone()
            if row is None:
                raise RecordNotFoundError(record_id)
            conn.execute(
                "INSERT INTO cleared_record (record_id, cleared_at) VALUES (?, ?)",
                (record_id, cleared_at),
            )
            conn.commit()

    # ------------------------------------------------------------------
    # Queries (read-only)
    # ------------------------------------------------------------------

    def find_latest(
        self,
        provider_id: str,
        template_id: str,
        statuses: Iterable[ContractStatus] | None = None,
    ) -> GeneratedContract | None:
        """Most recent record for the pair, optionally filtered by status."""
        sql = f"SELECT {_COLUMNS} FROM generation_log WHERE provider_id = ? AND template_id = ? AND {_LIVE}"
        params: list[str] = [provider_id, template_id]
        wanted = [s.value for s in statuses] if statuses is not None else []
        if wanted:
            sql += f" AND status IN ({', '.join('?' for _ in wanted)})"
            params.extend(wanted)
        sql += " ORDER BY id DESC LIMIT 1"
        with self._connect() as conn:
            row = conn.execute(sql, params).fetchone()
        return self._row_to_contract(row) if row else None

    def history(self, provider_id: str, template_id: str) -> list[GeneratedContract]:
        """Every record for the pair, oldest first."""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM generation_log "
                f"WHERE provider_id = ? AND template_id = ? AND {_LIVE} ORDER BY id ASC",
                (provider_id, template_id),
            ).fetchall()
        return [self._row_to_contract(row) for row in rows]

    def list_page(self, token: str | None = None, limit: int = 50) -> LogPage:
        """Records oldest first; pass ``next_token`` back to continue."""
        after = int(token) if token else 0
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT id, {_COLUMNS} FROM generation_log WHERE id > ? AND {_LIVE} ORDER BY id ASC LIMIT ?",
                (after, limit + 1),
            ).fetchall()
        page, extra = rows[:limit], rows[limit:]
        items = [self._row_to_contract(row[1:]) for row in page]
        next_token = str(page[-1][0]) if extra else None
        return LogPage(items=items, next_token=next_token)

    def live_records(self, provider_ids: Iterable[str] | None = None) -> list[GeneratedContract]:
        """Every uncleared record, oldest first, optionally for some providers only."""
        wanted = set(provider_ids) if provider_ids is not None else None
        records: list[GeneratedContract] = []
        token: str | None = None
        while True:
            page = self.list_page(token, limit=500)
            records.extend(r for r in page.items if wanted is None or r.provider_id in wanted)
            if page.next_token is None:
                return records
            token = page.next_token

    # ------------------------------------------------------------------
    # Chain verification
    # ------------------------------------------------------------------

    def verify_chain(self) -> bool:
        """Recompute every seal; raises ``LogIntegrityError`` on a break."""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM generation_log ORDER BY id ASC"
            ).fetchall()

        prev_hash = ""
        for row in rows:
            contract = self._row_to_contract(row)
            previous_record_hash, record_hash = row[-2], row[-1]
            if previous_record_hash != prev_hash:
                raise LogIntegrityError(
                    f"Chain broken at record {contract.record_id}: "
                    f"expected previous_hash={prev_hash!r}, got {previous_record_hash!r}"
                )
            expected = self._seal(contract, previous_record_hash)
            if record_hash != expected:
                raise LogIntegrityError(
                    f"Tampered record {contract.record_id}: "
                    f"expected hash={expected!r}, got {record_hash!r}"
                )
            prev_hash = record_hash
        return True

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_contract(row: tuple) -> GeneratedContract:
        (
            record_id,
            provider_id,
            template_id,
            contract_year,
            status,
            generated_at,
            file_name,
            permanent_url,
            file_hash,
            error,
            _previous_record_hash,
            _record_hash,
        ) = row
        return GeneratedContract(
            record_id=record_id,
            provider_id=provider_id,
            template_id=template_id,
            contract_year=contract_year,
            status=ContractStatus(status),
            generated_at=generated_at,
            file_name=file_name,
            permanent_url=permanent_url,
            file_hash=file_hash,
            error=error,
        )
