from collections.abc import Generator

from fastapi import Depends, Request
from sqlmodel import Session

from ..services import LedgerService, PaymentProvider, PaymentService, TipLedgerRepository
from .config import Settings
from .db import Database
from .events import TransactionEventBus


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_database(request: Request) -> Database:
    return request.app.state.database


def get_session(database: Database = Depends(get_database)) -> Generator[Session, None, None]:
    yield from database.session()


def get_event_bus(request: Request) -> TransactionEventBus:
    return request.app.state.event_bus


def get_payment_provider(request: Request) -> PaymentProvider:
    return request.app.state.payment_provider


def get_ledger_service(
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_app_settings),
    notifier: TransactionEventBus = Depends(get_event_bus),
) -> LedgerService:
    repository = TipLedgerRepository(session)
    return LedgerService(session, repository, settings=settings, notifier=notifier)


def get_payment_service(
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_app_settings),
    notifier: TransactionEventBus = Depends(get_event_bus),
    provider: PaymentProvider = Depends(get_payment_provider),
) -> PaymentService:
    repository = TipLedgerRepository(session)
    return PaymentService(session, provider, repository, settings=settings, notifier=notifier)
