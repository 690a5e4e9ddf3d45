from contextvars import ContextVar
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from loguru import logger
from sqlalchemy.orm import Session, sessionmaker

from app.database import SessionLocal
from app.repositories import (
    InvoicesRepo,
    OrdersRepo,
    PaymentsRepo,
    SubscriptionPlansRepo,
    SubscriptionsRepo,
    SubscriptionUsageRepo,
)

T = TypeVar("T")


@dataclass
class TransactionRepos:
    session: Session
    orders: OrdersRepo
    plans: SubscriptionPlansRepo
    subscriptions: SubscriptionsRepo
    usages: SubscriptionUsageRepo
    invoices: InvoicesRepo
    payments: PaymentsRepo

    @classmethod
    def for_session(cls, session: Session) -> "TransactionRepos":
        return cls(
            session=session,
            orders=OrdersRepo(session),
            plans=SubscriptionPlansRepo(session),
            subscriptions=SubscriptionsRepo(session),
            usages=SubscriptionUsageRepo(session),
            invoices=InvoicesRepo(session),
            payments=PaymentsRepo(session),
        )


class UnitOfWork:
    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self._session_factory = session_factory
        self._current: ContextVar[Optional[TransactionRepos]] = ContextVar(
            f"unit_of_work_{id(self)}", default=None
        )

    def run_in_transaction(self, fn: Callable[[TransactionRepos], T]) -> T:
        """
        Run fn inside one database transaction.

        A call made while a transaction is already open on this unit of work
        joins it: fn gets the same repositories and the outer call decides
        commit or rollback. No savepoint or second session is created.
        """
        current = self._current.get()
        if current is not None:
            logger.debug("run_in_transaction re-entered; joining the open transaction")
            return fn(current)

        session = self._session_factory()
        repos = TransactionRepos.for_session(session)
        token = self._current.set(repos)
        try:
            result = fn(repos)
            session.commit()
            return result
        except Exception:
            session.rollback()
            raise
        finally:
            self._current.reset(token)
            session.close()
