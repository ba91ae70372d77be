"""Credit accounting core: reservations, finalization, daily caps and grants."""

from .balance import BalanceProjector
from .credits import CreditService
from .errors import (
    CreditError,
    DailyCapExceeded,
    DuplicateRequest,
    InsufficientCredits,
    InvalidFinalizeStatus,
    UnknownRequest,
)
from .referrals import ReferralService
from .sweeper import expire_stale_reservations

__all__ = [
    "BalanceProjector",
    "CreditService",
    "ReferralService",
    "expire_stale_reservations",
    "CreditError",
    "DailyCapExceeded",
    "DuplicateRequest",
    "InsufficientCredits",
    "InvalidFinalizeStatus",
    "UnknownRequest",
]
