# creditgate/balance.py
from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from .ledger import LedgerStore
from .models import Action, ReferralSignup
from .schemas import BalanceSummary, LedgerEntryOut, LedgerHistory, ReferralStats


class BalanceProjector:
    """Read-side views derived from the ledger. Never writes."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def get_balance(self, user_id: str) -> int:
        with self._session_factory() as db:
            return LedgerStore(db).sum_balance(user_id)

    def get_available(self, user_id: str) -> int:
        with self._session_factory() as db:
            return LedgerStore(db).available(user_id)

    def get_summary(self, user_id: str) -> BalanceSummary:
        with self._session_factory() as db:
            ledger = LedgerStore(db)
            balance = ledger.sum_balance(user_id)
            reserved = ledger.sum_reserved(user_id)
        return BalanceSummary(
            user_id=user_id,
            balance=balance,
            available=balance - reserved,
            reserved=reserved,
        )

    def get_referral_stats(self, user_id: str) -> ReferralStats:
        with self._session_factory() as db:
            referred_count = db.execute(
                select(func.count())
                .select_from(ReferralSignup)
                .where(ReferralSignup.referrer_user_id == user_id)
            ).scalar_one()
            credits = LedgerStore(db).sum_granted_for_action(user_id, Action.REFERRAL_REFERRER)
        return ReferralStats(
            referred_count=int(referred_count),
            credits_from_referrals=credits,
        )

    def get_history(self, user_id: str, page: int = 1, page_size: int = 20) -> LedgerHistory:
        """Newest first. Out-of-range paging falls back to page 1 / 20 rows."""
        if page <= 0:
            page = 1
        if page_size <= 0 or page_size > 100:
            page_size = 20
        with self._session_factory() as db:
            rows, total = LedgerStore(db).list_by_user(user_id, page, page_size)
            entries = [LedgerEntryOut.model_validate(r) for r in rows]
        return LedgerHistory(
            user_id=user_id,
            entries=entries,
            total_count=total,
            page=page,
            page_size=page_size,
        )
