# creditgate/quota.py
from __future__ import annotations

import datetime as dt
from typing import Optional

from sqlalchemy.orm import Session

from .errors import DailyCapExceeded
from .ledger import LedgerStore


def allow_today(
    db: Session,
    user_id: str,
    cost: int,
    cap: int,
    at: Optional[dt.datetime] = None,
) -> bool:
    """
    True iff today's (UTC) held + spent credits plus ``cost`` stay within ``cap``.
    No rows today counts as zero spend.
    """
    day_spend = LedgerStore(db).sum_day_spend(user_id, at=at)
    return day_spend + cost <= cap


def check_daily_cap(db: Session, user_id: str, cost: int, cap: int) -> None:
    """Raise ``DailyCapExceeded`` when ``cost`` would push the user over ``cap``.

    Must run in the same locked transaction as the reservation write.
    """
    ledger = LedgerStore(db)
    day_spend = ledger.sum_day_spend(user_id)
    if day_spend + cost > cap:
        raise DailyCapExceeded(
            "Daily generation limit reached. Please try again tomorrow.",
            day_spend=day_spend,
            daily_cap=cap,
            requested=cost,
        )
