# creditgate/referrals.py
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from .config import settings
from .credits import CreditService
from .errors import DuplicateRequest, SelfReferral
from .models import Action, ReferralSignup
from .schemas import ReferralResult

logger = logging.getLogger(__name__)


class ReferralService:
    """
    Referral bonuses, at most once per referred user.

    The ``referral_signups`` row is written first, under its uniqueness
    constraint, and the bonuses ride in the same transaction. A second trigger
    for the same referred user hits the constraint and grants nothing.
    """

    def __init__(
        self,
        credits: CreditService,
        referrer_bonus: Optional[int] = None,
        referred_bonus: Optional[int] = None,
    ) -> None:
        self._credits = credits
        self.referrer_bonus = (
            settings.referral_referrer_bonus if referrer_bonus is None else referrer_bonus
        )
        self.referred_bonus = (
            settings.referral_new_bonus if referred_bonus is None else referred_bonus
        )

    def process_referral(self, referrer_user_id: str, referred_user_id: str) -> ReferralResult:
        if referrer_user_id == referred_user_id:
            raise SelfReferral("Users cannot refer themselves")

        try:
            with self._credits.user_transaction(referrer_user_id) as db:
                existing = db.execute(
                    select(ReferralSignup).where(
                        ReferralSignup.referred_user_id == referred_user_id
                    )
                ).scalar_one_or_none()
                if existing is not None:
                    logger.info(
                        "referral already recorded referred=%s referrer=%s",
                        referred_user_id, existing.referrer_user_id,
                    )
                    return ReferralResult(awarded=False)

                db.add(ReferralSignup(
                    referrer_user_id=referrer_user_id,
                    referred_user_id=referred_user_id,
                ))
                db.flush()

                if self.referrer_bonus > 0:
                    self._credits.grant_in(
                        db,
                        referrer_user_id,
                        self.referrer_bonus,
                        reason="referral_referrer",
                        metadata={"referred_user_id": referred_user_id},
                        request_id=f"referral:{referred_user_id}:referrer",
                        action=Action.REFERRAL_REFERRER,
                    )
                if self.referred_bonus > 0:
                    # the referred user's account is not locked here; grants only
                    # add credits so they cannot cause an overspend
                    self._credits.grant_in(
                        db,
                        referred_user_id,
                        self.referred_bonus,
                        reason="referral_new",
                        metadata={"referrer_user_id": referrer_user_id},
                        request_id=f"referral:{referred_user_id}:new",
                        action=Action.REFERRAL_NEW,
                    )
        except (IntegrityError, DuplicateRequest):
            # another trigger won the race for this referred user
            logger.info("referral race lost referred=%s referrer=%s", referred_user_id, referrer_user_id)
            return ReferralResult(awarded=False)

        logger.info(
            "referral awarded referrer=%s referred=%s bonus=%s/%s",
            referrer_user_id, referred_user_id, self.referrer_bonus, self.referred_bonus,
        )
        return ReferralResult(
            awarded=True,
            referrer_bonus=self.referrer_bonus,
            referred_bonus=self.referred_bonus,
        )
