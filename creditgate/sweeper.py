# creditgate/sweeper.py
from __future__ import annotations

import datetime as dt
import logging
from typing import Optional

from .config import settings
from .credits import CreditService
from .ledger import LedgerStore
from .models import EntryStatus, now_utc

logger = logging.getLogger(__name__)


def expire_stale_reservations(
    credits: CreditService,
    older_than: Optional[dt.timedelta] = None,
    now: Optional[dt.datetime] = None,
    batch_size: int = 500,
) -> int:
    """
    Refund reservations whose finalize never arrived.
    Scans in batches of ``batch_size`` until no stale reservation is left, and
    returns how many entries moved to ``refunded``.
    Run it from cron / an external scheduler; nothing here schedules itself.
    """
    older_than = older_than or dt.timedelta(minutes=settings.reservation_ttl_minutes)
    cutoff = (now or now_utc()) - older_than

    refunded = 0
    candidates = 0
    while True:
        db = credits.read_session()
        try:
            stale = [
                (e.user_id, e.request_id, dict(e.meta or {}))
                for e in LedgerStore(db).list_stale_reservations(cutoff, limit=batch_size)
            ]
        finally:
            db.close()
        if not stale:
            break
        candidates += len(stale)

        for user_id, request_id, meta in stale:
            meta["expired_by_sweeper"] = True
            meta["expired_at"] = now_utc().isoformat()
            with credits.user_transaction(user_id) as tx:
                # a finalize may have landed since the scan; the conditional update skips it
                if LedgerStore(tx).transition(request_id, EntryStatus.RESERVED, EntryStatus.REFUNDED, meta=meta):
                    refunded += 1
                    logger.info("swept stale reservation user=%s request=%s", user_id, request_id)

    if candidates:
        logger.info("sweep done cutoff=%s candidates=%s refunded=%s", cutoff.isoformat(), candidates, refunded)
    return refunded
