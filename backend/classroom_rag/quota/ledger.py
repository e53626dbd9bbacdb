"""Per-account token budgets.

Three counters live on the ``accounts`` row:

* ``storage_tokens_used``: tokens of extracted text currently stored, capped by
  ``storage_token_cap``; released when documents are deleted.
* ``monthly_import_tokens_used``: tokens imported this month, capped by
  ``monthly_import_token_cap``; zeroed on the first instant of each month.
* ``token_balance``: spendable tokens for chat, debited by measured usage.

Every change is one conditional UPDATE. A statement that would push a counter
past its cap matches no row, so two concurrent reservations can never both
succeed past the ceiling.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Iterator, Literal

from classroom_rag.core.config import Settings
from classroom_rag.core.errors import NotFoundError, QuotaExceededError, QuotaExhaustedError
from classroom_rag.core.logging import get_logger, log_context
from classroom_rag.core.metrics import TOKENS_DEBITED
from classroom_rag.db.sqlite import SQLiteDatabase
from classroom_rag.utils.time import first_instant_of_next_month, from_ms, to_ms, utc_now

logger = get_logger(__name__)

QuotaKind = Literal["storage", "monthly_import"]

_COLUMNS: dict[str, str] = {
    "storage": "storage_tokens_used",
    "monthly_import": "monthly_import_tokens_used",
}


@dataclass(slots=True)
class QuotaSnapshot:
    account_id: str
    token_balance: int
    storage_tokens_used: int
    storage_token_cap: int
    monthly_import_tokens_used: int
    monthly_import_token_cap: int
    reset_date: datetime

    def to_dict(self) -> dict[str, object]:
        return {
            "accountId": self.account_id,
            "tokenBalance": self.token_balance,
            "storageTokensUsed": self.storage_tokens_used,
            "storageTokenCap": self.storage_token_cap,
            "monthlyImportTokensUsed": self.monthly_import_tokens_used,
            "monthlyImportTokenCap": self.monthly_import_token_cap,
            "resetDate": self.reset_date.isoformat(),
        }


class QuotaLedger:
    """Atomic authorization and consumption of account token budgets."""

    def __init__(
        self,
        database: SQLiteDatabase,
        settings: Settings,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.db = database
        self.settings = settings
        self.clock = clock

    # Accounts ---------------------------------------------------------

    def ensure_account(self, account_id: str, cursor: sqlite3.Cursor | None = None) -> None:
        """Create the account row on first sight with the starting balance."""
        now = self.clock()
        with self._cursor(cursor) as cur:
            cur.execute(
                """
                INSERT OR IGNORE INTO accounts (
                  account_id, token_balance, storage_tokens_used, monthly_import_tokens_used,
                  reset_date, created_at, updated_at
                ) VALUES (?, ?, 0, 0, ?, ?, ?)
                """,
                [
                    account_id,
                    self.settings.starting_token_balance,
                    to_ms(first_instant_of_next_month(now)),
                    to_ms(now),
                    to_ms(now),
                ],
            )

    def snapshot(self, account_id: str, cursor: sqlite3.Cursor | None = None) -> QuotaSnapshot:
        with self._cursor(cursor) as cur:
            self.ensure_account(account_id, cursor=cur)
            row = cur.execute(
                """
                SELECT account_id, token_balance, storage_tokens_used,
                       monthly_import_tokens_used, reset_date
                FROM accounts WHERE account_id = ?
                """,
                [account_id],
            ).fetchone()
        if row is None:
            raise NotFoundError(f"Account {account_id} not found")
        return QuotaSnapshot(
            account_id=row["account_id"],
            token_balance=row["token_balance"],
            storage_tokens_used=row["storage_tokens_used"],
            storage_token_cap=self.settings.storage_token_cap,
            monthly_import_tokens_used=row["monthly_import_tokens_used"],
            monthly_import_token_cap=self.settings.monthly_import_token_cap,
            reset_date=from_ms(row["reset_date"]),
        )

    # Budgets ----------------------------------------------------------

    def reserve(
        self,
        account_id: str,
        tokens: int,
        kind: QuotaKind,
        cursor: sqlite3.Cursor | None = None,
    ) -> int:
        """Consume ``tokens`` of one budget, or raise without changing anything."""
        if tokens < 0:
            raise ValueError("tokens must be non-negative")
        column = _COLUMNS[kind]
        cap = self._cap(kind)
        with self._cursor(cursor) as cur:
            self.ensure_account(account_id, cursor=cur)
            updated = cur.execute(
                f"""
                UPDATE accounts
                SET {column} = {column} + ?, updated_at = ?
                WHERE account_id = ? AND {column} + ? <= ?
                """,
                [tokens, to_ms(self.clock()), account_id, tokens, cap],
            )
            if updated.rowcount == 0:
                used = self._read_counter(cur, account_id, column)
                raise QuotaExceededError(kind, tokens, used, cap)
            new_value = self._read_counter(cur, account_id, column)
        TOKENS_DEBITED.labels(kind=kind).inc(tokens)
        logger.info(
            "Reserved %s %s tokens",
            tokens,
            kind,
            extra=log_context(account_id=account_id, used=new_value, cap=cap),
        )
        return new_value

    def reserve_import(
        self,
        account_id: str,
        tokens_stored: int,
        tokens_imported: int,
        cursor: sqlite3.Cursor | None = None,
    ) -> None:
        """Charge both budgets for an ingestion in a single conditional UPDATE.

        ``tokens_stored`` is the change in stored content and may be negative
        when a re-ingested document shrank; the storage counter is floored at 0.
        """
        if tokens_imported < 0:
            raise ValueError("tokens_imported must be non-negative")
        storage_cap = self.settings.storage_token_cap
        import_cap = self.settings.monthly_import_token_cap
        with self._cursor(cursor) as cur:
            self.ensure_account(account_id, cursor=cur)
            updated = cur.execute(
                """
                UPDATE accounts
                SET storage_tokens_used = MAX(storage_tokens_used + ?, 0),
                    monthly_import_tokens_used = monthly_import_tokens_used + ?,
                    updated_at = ?
                WHERE account_id = ?
                  AND (? <= 0 OR storage_tokens_used + ? <= ?)
                  AND monthly_import_tokens_used + ? <= ?
                """,
                [
                    tokens_stored,
                    tokens_imported,
                    to_ms(self.clock()),
                    account_id,
                    tokens_stored,
                    tokens_stored,
                    storage_cap,
                    tokens_imported,
                    import_cap,
                ],
            )
            if updated.rowcount == 0:
                raise self._explain_import_rejection(cur, account_id, tokens_stored, tokens_imported)
        if tokens_stored > 0:
            TOKENS_DEBITED.labels(kind="storage").inc(tokens_stored)
        TOKENS_DEBITED.labels(kind="monthly_import").inc(tokens_imported)

    def check_import(self, account_id: str, tokens_stored: int, tokens_imported: int) -> None:
        """Read-only pre-flight of :meth:`reserve_import`."""
        snapshot = self.snapshot(account_id)
        if tokens_imported > 0 and (
            snapshot.monthly_import_tokens_used + tokens_imported > snapshot.monthly_import_token_cap
        ):
            raise QuotaExceededError(
                "monthly_import",
                tokens_imported,
                snapshot.monthly_import_tokens_used,
                snapshot.monthly_import_token_cap,
            )
        if tokens_stored > 0 and snapshot.storage_tokens_used + tokens_stored > snapshot.storage_token_cap:
            raise QuotaExceededError(
                "storage", tokens_stored, snapshot.storage_tokens_used, snapshot.storage_token_cap
            )

    def release_storage(self, account_id: str, tokens: int, cursor: sqlite3.Cursor | None = None) -> None:
        if tokens <= 0:
            return
        with self._cursor(cursor) as cur:
            cur.execute(
                """
                UPDATE accounts
                SET storage_tokens_used = MAX(storage_tokens_used - ?, 0), updated_at = ?
                WHERE account_id = ?
                """,
                [tokens, to_ms(self.clock()), account_id],
            )

    def reset_if_due(self, account_id: str, cursor: sqlite3.Cursor | None = None) -> bool:
        """Zero the monthly import counter once the stored reset date has passed."""
        now = self.clock()
        with self._cursor(cursor) as cur:
            self.ensure_account(account_id, cursor=cur)
            row = cur.execute(
                "SELECT reset_date, monthly_import_tokens_used FROM accounts WHERE account_id = ?",
                [account_id],
            ).fetchone()
            previous = row["reset_date"]
            if previous > to_ms(now):
                return False
            next_reset = to_ms(first_instant_of_next_month(now))
            updated = cur.execute(
                """
                UPDATE accounts
                SET monthly_import_tokens_used = 0, reset_date = ?, updated_at = ?
                WHERE account_id = ? AND reset_date = ?
                """,
                [next_reset, to_ms(now), account_id, previous],
            )
            if updated.rowcount == 0:
                return False
        logger.info(
            "Monthly import budget reset",
            extra=log_context(
                account_id=account_id,
                previous_used=row["monthly_import_tokens_used"],
                next_reset=from_ms(next_reset).isoformat(),
            ),
        )
        return True

    # Spendable balance ------------------------------------------------

    def ensure_has_balance(self, account_id: str) -> int:
        snapshot = self.snapshot(account_id)
        if snapshot.token_balance <= 0:
            raise QuotaExhaustedError()
        return snapshot.token_balance

    def debit_balance(self, account_id: str, tokens: int, cursor: sqlite3.Cursor | None = None) -> int:
        """Charge measured usage; the balance never drops below zero."""
        if tokens < 0:
            raise ValueError("tokens must be non-negative")
        with self._cursor(cursor) as cur:
            self.ensure_account(account_id, cursor=cur)
            cur.execute(
                """
                UPDATE accounts
                SET token_balance = MAX(token_balance - ?, 0), updated_at = ?
                WHERE account_id = ?
                """,
                [tokens, to_ms(self.clock()), account_id],
            )
            remaining = self._read_counter(cur, account_id, "token_balance")
        TOKENS_DEBITED.labels(kind="balance").inc(tokens)
        return remaining

    def credit(
        self,
        account_id: str,
        tokens: int,
        source: str,
        entitlements: Iterable[str] = (),
        cursor: sqlite3.Cursor | None = None,
    ) -> QuotaSnapshot:
        """Add purchased tokens and grant entitlements owned by ``source``.

        Grants are additive: a credit that carries no entitlement leaves the
        account's existing entitlements untouched.
        """
        if tokens < 0:
            raise ValueError("tokens must be non-negative")
        with self._cursor(cursor) as cur:
            self.ensure_account(account_id, cursor=cur)
            now = to_ms(self.clock())
            cur.execute(
                "UPDATE accounts SET token_balance = token_balance + ?, updated_at = ? WHERE account_id = ?",
                [tokens, now, account_id],
            )
            cur.executemany(
                """
                INSERT OR IGNORE INTO account_entitlements (account_id, entitlement, source, granted_at)
                VALUES (?, ?, ?, ?)
                """,
                [(account_id, entitlement, source, now) for entitlement in entitlements],
            )
            return self.snapshot(account_id, cursor=cur)

    def revoke_entitlement(
        self,
        account_id: str,
        entitlement: str,
        source: str,
        cursor: sqlite3.Cursor | None = None,
    ) -> None:
        """Remove only the grant made by ``source``; grants from other sources survive."""
        with self._cursor(cursor) as cur:
            cur.execute(
                "DELETE FROM account_entitlements WHERE account_id = ? AND entitlement = ? AND source = ?",
                [account_id, entitlement, source],
            )

    def entitlements(self, account_id: str) -> set[str]:
        rows = self.db.query(
            "SELECT DISTINCT entitlement FROM account_entitlements WHERE account_id = ?",
            [account_id],
        )
        return {row["entitlement"] for row in rows}

    # Internal helpers -------------------------------------------------

    @contextmanager
    def _cursor(self, cursor: sqlite3.Cursor | None) -> Iterator[sqlite3.Cursor]:
        if cursor is not None:
            yield cursor
            return
        with self.db.transaction() as cur:
            yield cur

    def _cap(self, kind: QuotaKind) -> int:
        if kind == "storage":
            return self.settings.storage_token_cap
        return self.settings.monthly_import_token_cap

    @staticmethod
    def _read_counter(cursor: sqlite3.Cursor, account_id: str, column: str) -> int:
        row = cursor.execute(f"SELECT {column} FROM accounts WHERE account_id = ?", [account_id]).fetchone()
        return int(row[column]) if row else 0

    def _explain_import_rejection(
        self,
        cursor: sqlite3.Cursor,
        account_id: str,
        tokens_stored: int,
        tokens_imported: int,
    ) -> QuotaExceededError:
        monthly_used = self._read_counter(cursor, account_id, "monthly_import_tokens_used")
        if monthly_used + tokens_imported > self.settings.monthly_import_token_cap:
            return QuotaExceededError(
                "monthly_import", tokens_imported, monthly_used, self.settings.monthly_import_token_cap
            )
        storage_used = self._read_counter(cursor, account_id, "storage_tokens_used")
        return QuotaExceededError("storage", tokens_stored, storage_used, self.settings.storage_token_cap)


__all__ = ["QuotaLedger", "QuotaSnapshot", "QuotaKind"]
