# creditgate/credits.py
"""Credit reservation, finalization and grants.

Every mutation for a user runs as one unit:

    user lock (process) -> account row FOR UPDATE (database) -> checks -> write -> commit

so two reservations for the same user can never both observe the balance
from before the other's write. Different users never wait on each other.
"""
from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from typing import Iterable, Iterator, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from .config import settings
from .errors import (
    DailyCapExceeded,
    DuplicateRequest,
    InsufficientCredits,
    InvalidAction,
    InvalidAmount,
    InvalidDisposition,
    InvalidFinalizeStatus,
    UnknownRequest,
)
from .ledger import LedgerStore
from .locks import UserLockRegistry
from .models import Action, CreditAccount, Disposition, EntryStatus, LedgerEntry
from .quota import allow_today, check_daily_cap
from .schemas import FinalizeResult, GrantResult, ReservationResult

logger = logging.getLogger(__name__)


def _positive_int(value, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidAmount(f"{field} must be a positive integer, got {value!r}")
    return value


class CreditService:
    """Credit accounting operations over a session factory."""

    def __init__(
        self,
        session_factory: sessionmaker,
        locks: Optional[UserLockRegistry] = None,
        daily_cap: Optional[int] = None,
        starter_credits: Optional[int] = None,
        allowed_actions: Optional[Iterable[str]] = None,
    ) -> None:
        self._session_factory = session_factory
        self._locks = locks or UserLockRegistry()
        self.daily_cap = settings.daily_cap if daily_cap is None else daily_cap
        self.starter_credits = (
            settings.starter_credits if starter_credits is None else starter_credits
        )
        self.allowed_actions = frozenset(
            settings.allowed_actions if allowed_actions is None else allowed_actions
        )

    @property
    def locks(self) -> UserLockRegistry:
        return self._locks

    # -------------------------
    # Unit of work
    # -------------------------
    @contextmanager
    def user_transaction(self, user_id: str) -> Iterator[Session]:
        """Exclusive, committed-on-success transaction scoped to one user."""
        with self._locks.hold(user_id):
            db: Session = self._session_factory()
            try:
                self._lock_account(db, user_id)
                yield db
                db.commit()
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()

    def _lock_account(self, db: Session, user_id: str) -> CreditAccount:
        account = db.execute(
            select(CreditAccount)
            .where(CreditAccount.user_id == user_id)
            .with_for_update()
        ).scalar_one_or_none()
        if account is not None:
            return account

        # first sight of this user: open the account and hand out starter credits
        account = CreditAccount(user_id=user_id)
        db.add(account)
        try:
            db.flush()
        except IntegrityError:
            # opened concurrently by another process
            db.rollback()
            return db.execute(
                select(CreditAccount)
                .where(CreditAccount.user_id == user_id)
                .with_for_update()
            ).scalar_one()

        if self.starter_credits > 0:
            LedgerStore(db).append(LedgerEntry(
                user_id=user_id,
                request_id=f"starter:{user_id}",
                action=Action.STARTER_GRANT,
                amount=self.starter_credits,
                status=EntryStatus.GRANTED,
                meta={"reason": "starter credits"},
            ))
            logger.info("opened account user=%s starter_credits=%s", user_id, self.starter_credits)
        return account

    def read_session(self) -> Session:
        return self._session_factory()

    # -------------------------
    # Daily cap
    # -------------------------
    def allow_today(self, user_id: str, cost: int, cap: Optional[int] = None) -> bool:
        cap = self.daily_cap if cap is None else cap
        db = self.read_session()
        try:
            return allow_today(db, user_id, cost, cap)
        finally:
            db.close()

    # -------------------------
    # Reserve
    # -------------------------
    def reserve(
        self,
        user_id: str,
        request_id: str,
        action: str,
        cost: int,
        metadata: Optional[dict] = None,
    ) -> ReservationResult:
        _positive_int(cost, "cost")
        if action not in self.allowed_actions:
            raise InvalidAction(
                f"Invalid action: {action}. Allowed: {', '.join(sorted(self.allowed_actions))}"
            )

        try:
            with self.user_transaction(user_id) as db:
                ledger = LedgerStore(db)

                # 1) replay of an earlier reservation
                prior = self._find_prior(ledger, user_id, request_id)
                if prior is not None:
                    logger.info("reserve replay user=%s request=%s status=%s", user_id, request_id, prior.status)
                    return self._reservation_result(ledger, prior, replayed=True)

                # 2) daily cap
                check_daily_cap(db, user_id, cost, self.daily_cap)

                # 3) balance
                available = ledger.available(user_id)
                if available < cost:
                    raise InsufficientCredits(
                        f"You need {cost} credits but only have {available}.",
                        available=available,
                        required=cost,
                        shortfall=cost - available,
                    )

                # 4) hold
                entry = ledger.append(LedgerEntry(
                    user_id=user_id,
                    request_id=request_id,
                    action=action,
                    amount=-cost,
                    status=EntryStatus.RESERVED,
                    meta=dict(metadata or {}, type="reservation"),
                ))
                logger.info(
                    "reserved user=%s request=%s action=%s cost=%s available=%s",
                    user_id, request_id, action, cost, available - cost,
                )
                return ReservationResult(
                    reservation_id=entry.id,
                    request_id=request_id,
                    status=EntryStatus.RESERVED,
                    available=available - cost,
                )
        except DuplicateRequest:
            # same request id landed from another process between lookup and insert
            return self._replay_reservation(user_id, request_id)
        except (InsufficientCredits, DailyCapExceeded) as e:
            logger.warning("reserve rejected user=%s request=%s: %s", user_id, request_id, e.code)
            raise

    def _find_prior(self, ledger: LedgerStore, user_id: str, request_id: str) -> Optional[LedgerEntry]:
        prior = ledger.find_by_request_global(request_id)
        if prior is not None and prior.user_id != user_id:
            raise DuplicateRequest(
                f"request_id {request_id!r} belongs to another user",
                request_id=request_id,
            )
        return prior

    def _replay_reservation(self, user_id: str, request_id: str) -> ReservationResult:
        db = self.read_session()
        try:
            ledger = LedgerStore(db)
            prior = self._find_prior(ledger, user_id, request_id)
            if prior is None:
                raise UnknownRequest(f"request_id {request_id!r} vanished after conflict")
            return self._reservation_result(ledger, prior, replayed=True)
        finally:
            db.close()

    @staticmethod
    def _reservation_result(ledger: LedgerStore, entry: LedgerEntry, replayed: bool) -> ReservationResult:
        if entry.status == EntryStatus.GRANTED:
            raise DuplicateRequest(
                f"request_id {entry.request_id!r} is a grant, not a reservation",
                request_id=entry.request_id,
            )
        return ReservationResult(
            reservation_id=entry.id,
            request_id=entry.request_id,
            status=entry.status,
            available=ledger.available(entry.user_id),
            replayed=replayed,
        )

    # -------------------------
    # Finalize
    # -------------------------
    def finalize(
        self,
        request_id: str,
        disposition: str,
        user_id: Optional[str] = None,
    ) -> FinalizeResult:
        if disposition not in Disposition.ALL:
            raise InvalidDisposition(
                f'Invalid disposition {disposition!r} - must be "commit" or "refund"'
            )
        target = Disposition.TARGET_STATUS[disposition]

        owner = self._owner_of(request_id)
        if owner is None or (user_id is not None and owner != user_id):
            raise UnknownRequest(f"No reservation for request_id {request_id!r}")

        with self.user_transaction(owner) as db:
            ledger = LedgerStore(db)
            entry = ledger.find_by_request(owner, request_id)
            if entry is None:
                raise UnknownRequest(f"No reservation for request_id {request_id!r}")

            if entry.status == EntryStatus.RESERVED:
                if ledger.transition(request_id, EntryStatus.RESERVED, target):
                    logger.info("finalized user=%s request=%s -> %s", owner, request_id, target)
                    return FinalizeResult(request_id=request_id, status=target)
                # moved by a writer that bypassed the account lock; re-read
                entry = ledger.find_by_request(owner, request_id)

            if entry.status == target:
                logger.info("finalize replay user=%s request=%s status=%s", owner, request_id, target)
                return FinalizeResult(request_id=request_id, status=target, replayed=True)

            raise InvalidFinalizeStatus(
                f"request_id {request_id!r} is already {entry.status}; cannot {disposition}",
                status=entry.status,
            )

    def _owner_of(self, request_id: str) -> Optional[str]:
        db = self.read_session()
        try:
            entry = LedgerStore(db).find_by_request_global(request_id)
            return entry.user_id if entry is not None else None
        finally:
            db.close()

    # -------------------------
    # Grant
    # -------------------------
    def grant(
        self,
        user_id: str,
        amount: int,
        reason: str,
        metadata: Optional[dict] = None,
        request_id: Optional[str] = None,
        action: str = Action.ADMIN_GRANT,
    ) -> GrantResult:
        """Add credits. A deterministic ``request_id`` makes the grant exactly-once."""
        _positive_int(amount, "amount")
        request_id = request_id or str(uuid.uuid4())

        try:
            with self.user_transaction(user_id) as db:
                return self.grant_in(db, user_id, amount, reason, metadata, request_id, action)
        except DuplicateRequest:
            db = self.read_session()
            try:
                ledger = LedgerStore(db)
                prior = self._find_prior(ledger, user_id, request_id)
                if prior is None:
                    raise
                return self._grant_replay(ledger, prior)
            finally:
                db.close()

    def grant_in(
        self,
        db: Session,
        user_id: str,
        amount: int,
        reason: str,
        metadata: Optional[dict],
        request_id: str,
        action: str,
    ) -> GrantResult:
        """Grant inside a transaction the caller already holds for ``user_id``."""
        ledger = LedgerStore(db)
        prior = self._find_prior(ledger, user_id, request_id)
        if prior is not None:
            return self._grant_replay(ledger, prior)

        ledger.append(LedgerEntry(
            user_id=user_id,
            request_id=request_id,
            action=action,
            amount=amount,
            status=EntryStatus.GRANTED,
            meta=dict(metadata or {}, reason=reason),
        ))
        new_balance = ledger.sum_balance(user_id)
        logger.info(
            "granted user=%s request=%s action=%s amount=%s balance=%s",
            user_id, request_id, action, amount, new_balance,
        )
        return GrantResult(request_id=request_id, new_balance=new_balance)

    @staticmethod
    def _grant_replay(ledger: LedgerStore, prior: LedgerEntry) -> GrantResult:
        if prior.status != EntryStatus.GRANTED:
            raise DuplicateRequest(
                f"request_id {prior.request_id!r} is a {prior.status} entry, not a grant",
                request_id=prior.request_id,
            )
        return GrantResult(
            request_id=prior.request_id,
            new_balance=ledger.sum_balance(prior.user_id),
            replayed=True,
        )
