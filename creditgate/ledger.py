# creditgate/ledger.py
"""Ledger store: the append-only accounting log.

Every balance-affecting event is one ``LedgerEntry`` row. Rows are only ever
inserted, plus the single ``reserved -> committed|refunded`` status move done
through :meth:`LedgerStore.transition`. Balances are aggregations over these
rows and are never stored.
"""
from __future__ import annotations

import datetime as dt
import logging
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .errors import DuplicateRequest
from .models import EntryStatus, LedgerEntry, now_utc, utc_day_bounds

logger = logging.getLogger(__name__)


class LedgerStore:
    """ledger_entries access layer bound to one SQLAlchemy session."""

    def __init__(self, session: Session) -> None:
        self._db = session

    # -------------------------
    # Writes
    # -------------------------
    def append(self, entry: LedgerEntry) -> LedgerEntry:
        """Insert ``entry``. A taken request id raises ``DuplicateRequest``.

        After a ``DuplicateRequest`` the session must be rolled back.
        """
        self._db.add(entry)
        try:
            self._db.flush()
        except IntegrityError as e:
            raise DuplicateRequest(
                f"request_id {entry.request_id!r} already recorded",
                request_id=entry.request_id,
            ) from e
        logger.debug("ledger append %r", entry)
        return entry

    def transition(
        self,
        request_id: str,
        from_status: str,
        to_status: str,
        meta: Optional[dict] = None,
    ) -> bool:
        """Conditional status move. True only if the row was in ``from_status``."""
        values = {LedgerEntry.status: to_status, LedgerEntry.updated_at: now_utc()}
        if meta is not None:
            values[LedgerEntry.meta] = meta
        result = self._db.execute(
            update(LedgerEntry)
            .where(
                LedgerEntry.request_id == request_id,
                LedgerEntry.status == from_status,
            )
            .values(values)
            .execution_options(synchronize_session=False)
        )
        # reload loaded copies on next access
        self._db.expire_all()
        return result.rowcount == 1

    # -------------------------
    # Lookups
    # -------------------------
    def find_by_request(self, user_id: str, request_id: str) -> Optional[LedgerEntry]:
        return self._db.execute(
            select(LedgerEntry).where(
                LedgerEntry.user_id == user_id,
                LedgerEntry.request_id == request_id,
            )
        ).scalar_one_or_none()

    def find_by_request_global(self, request_id: str) -> Optional[LedgerEntry]:
        return self._db.execute(
            select(LedgerEntry).where(LedgerEntry.request_id == request_id)
        ).scalar_one_or_none()

    def list_by_user(
        self, user_id: str, page: int, page_size: int
    ) -> tuple[list[LedgerEntry], int]:
        if page <= 0:
            page = 1
        if page_size <= 0 or page_size > 100:
            page_size = 20

        total = self._db.execute(
            select(func.count()).select_from(LedgerEntry).where(LedgerEntry.user_id == user_id)
        ).scalar_one()
        rows = self._db.execute(
            select(LedgerEntry)
            .where(LedgerEntry.user_id == user_id)
            .order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).scalars().all()
        return list(rows), total

    def list_stale_reservations(self, cutoff: dt.datetime, limit: int = 500) -> list[LedgerEntry]:
        return list(
            self._db.execute(
                select(LedgerEntry)
                .where(
                    LedgerEntry.status == EntryStatus.RESERVED,
                    LedgerEntry.created_at < cutoff,
                )
                .order_by(LedgerEntry.created_at)
                .limit(limit)
            ).scalars().all()
        )

    # -------------------------
    # Aggregations
    # -------------------------
    def sum_balance(self, user_id: str) -> int:
        return self._sum(
            LedgerEntry.amount,
            LedgerEntry.user_id == user_id,
            LedgerEntry.status.in_(EntryStatus.SETTLED),
        )

    def sum_reserved(self, user_id: str) -> int:
        """Total credits currently on hold (positive number)."""
        return -self._sum(
            LedgerEntry.amount,
            LedgerEntry.user_id == user_id,
            LedgerEntry.status == EntryStatus.RESERVED,
        )

    def available(self, user_id: str) -> int:
        return self.sum_balance(user_id) - self.sum_reserved(user_id)

    def sum_day_spend(self, user_id: str, at: Optional[dt.datetime] = None) -> int:
        """Debits (held or spent) created within the UTC day containing ``at``."""
        start, end = utc_day_bounds(at)
        return -self._sum(
            LedgerEntry.amount,
            LedgerEntry.user_id == user_id,
            LedgerEntry.status.in_(EntryStatus.DEBITS),
            LedgerEntry.amount < 0,
            LedgerEntry.created_at >= start,
            LedgerEntry.created_at < end,
        )

    def sum_granted_for_action(self, user_id: str, action: str) -> int:
        return self._sum(
            LedgerEntry.amount,
            LedgerEntry.user_id == user_id,
            LedgerEntry.status == EntryStatus.GRANTED,
            LedgerEntry.action == action,
        )

    def _sum(self, column, *criteria) -> int:
        total = self._db.execute(
            select(func.coalesce(func.sum(column), 0)).where(*criteria)
        ).scalar_one()
        return int(total)
