from contextlib import contextmanager
from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import scheduler
from database import Base, build_engine
from models import CurrencyCode, Movement, MovementType, Pocket, PocketType
from schemas import AccountIn, MovementIn, PocketIn, SubPocketIn
from services import (
    AccountService,
    BalanceService,
    MovementService,
    PocketService,
    RestorationService,
    RestoreResult,
    SubPocketService,
)


def make_sessionmaker():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def make_session():
    return make_sessionmaker()()


def open_account(session, name, currency=CurrencyCode.usd, user_id=None):
    return AccountService(session, user_id).create(
        AccountIn(name=name, color="#3b82f6", currency=currency)
    )


def open_pocket(session, account, name, kind=PocketType.normal, user_id=None):
    return PocketService(session, user_id).create(
        PocketIn(account_id=account.id, name=name, type=kind)
    )


def book(
    session,
    account,
    pocket,
    kind,
    amount,
    *,
    pending=False,
    sub_pocket=None,
    user_id=None,
):
    return MovementService(session, user_id).create(
        MovementIn(
            type=kind,
            account_id=account.id,
            pocket_id=pocket.id,
            sub_pocket_id=sub_pocket.id if sub_pocket else None,
            amount_cents=amount,
            displayed_date=date(2025, 5, 2),
            is_pending=pending,
        )
    )


def test_restores_movements_once_account_and_pocket_are_recreated() -> None:
    session = make_session()
    checking = open_account(session, "Checking")
    groceries = open_pocket(session, checking, "Groceries")
    first = book(session, checking, groceries, MovementType.income_normal, 100)
    second = book(session, checking, groceries, MovementType.expense_normal, 30)
    AccountService(session).delete(checking.id)

    checking = open_account(session, "Checking")
    groceries = open_pocket(session, checking, "Groceries")
    result = RestorationService(session).restore_orphaned()

    assert result == RestoreResult(restored=2, failed=0)
    for movement_id in (first.id, second.id):
        movement = MovementService(session).get(movement_id)
        assert movement.is_orphaned is False
        assert movement.account_id == checking.id
        assert movement.pocket_id == groceries.id
        assert movement.orphaned_account_name is None
        assert movement.orphaned_account_currency is None
        assert movement.orphaned_pocket_name is None
    assert PocketService(session).get(groceries.id).balance_cents == 70
    assert AccountService(session).get(checking.id).balance_cents == 70


def test_unknown_account_counts_as_failure() -> None:
    session = make_session()
    savings = open_account(session, "Savings")
    pocket = open_pocket(session, savings, "Emergency")
    movement = book(session, savings, pocket, MovementType.income_normal, 500)
    AccountService(session).delete(savings.id)

    result = RestorationService(session).restore_orphaned()

    assert result.restored == 0
    assert result.failed == 1
    assert MovementService(session).get(movement.id).is_orphaned is True


def test_account_currency_and_pocket_name_must_both_match() -> None:
    session = make_session()
    checking = open_account(session, "Checking")
    groceries = open_pocket(session, checking, "Groceries")
    book(session, checking, groceries, MovementType.income_normal, 100)
    AccountService(session).delete(checking.id)

    pesos = open_account(session, "Checking", CurrencyCode.mxn)
    open_pocket(session, pesos, "Groceries")
    dollars = open_account(session, "Checking")
    open_pocket(session, dollars, "Food")

    result = RestorationService(session).restore_orphaned()

    assert result == RestoreResult(restored=0, failed=1)
    assert len(MovementService(session).orphaned()) == 1
    assert AccountService(session).get(pesos.id).balance_cents == 0


def test_restored_pending_movement_becomes_active() -> None:
    session = make_session()
    checking = open_account(session, "Checking")
    groceries = open_pocket(session, checking, "Groceries")
    movement = book(
        session, checking, groceries, MovementType.income_normal, 80, pending=True
    )
    PocketService(session).delete(groceries.id)

    groceries = open_pocket(session, checking, "Groceries")
    RestorationService(session).restore_orphaned()

    restored = MovementService(session).get(movement.id)
    assert restored.is_pending is False
    assert PocketService(session).get(groceries.id).balance_cents == 80
    assert AccountService(session).get(checking.id).balance_cents == 80


def test_one_failing_movement_does_not_abort_the_batch(monkeypatch) -> None:
    session = make_session()
    checking = open_account(session, "Checking")
    groceries = open_pocket(session, checking, "Groceries")
    broken = book(session, checking, groceries, MovementType.income_normal, 100)
    healthy = book(session, checking, groceries, MovementType.income_normal, 45)
    PocketService(session).delete(groceries.id)
    groceries = open_pocket(session, checking, "Groceries")

    service = RestorationService(session)
    original_update = service.stores.movements.update

    def flaky_update(movement):
        if movement.id == broken.id:
            raise RuntimeError("write conflict")
        return original_update(movement)

    monkeypatch.setattr(service.stores.movements, "update", flaky_update)

    result = service.restore_orphaned()

    assert result == RestoreResult(restored=1, failed=1)
    session.expire_all()
    assert session.get(Movement, broken.id).is_orphaned is True
    assert session.get(Movement, healthy.id).is_orphaned is False
    assert PocketService(session).get(groceries.id).balance_cents == 45


def test_failed_rebalance_leaves_movements_orphaned(tmp_path, monkeypatch) -> None:
    engine = build_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    with SessionLocal() as session:
        checking = open_account(session, "Checking")
        groceries = open_pocket(session, checking, "Groceries")
        movement = book(session, checking, groceries, MovementType.income_normal, 100)
        AccountService(session).delete(checking.id)
        checking = open_account(session, "Checking")
        groceries = open_pocket(session, checking, "Groceries")

    def failing_refresh(self, **_owners):
        raise RuntimeError("balance store unavailable")

    monkeypatch.setattr(BalanceService, "refresh", failing_refresh)
    with SessionLocal() as session:
        with pytest.raises(RuntimeError, match="balance store unavailable"):
            RestorationService(session).restore_orphaned()

    with SessionLocal() as session:
        stored = session.get(Movement, movement.id)
        assert stored.is_orphaned is True
        assert stored.pocket_id is None
        assert stored.orphaned_pocket_name == "Groceries"
        assert session.get(Pocket, groceries.id).balance_cents == 0
    engine.dispose()


def test_restoration_does_not_reattach_sub_pockets() -> None:
    session = make_session()
    checking = open_account(session, "Checking")
    bills = open_pocket(session, checking, "Bills", PocketType.fixed)
    rent = SubPocketService(session).create(
        SubPocketIn(
            pocket_id=bills.id, name="Rent", value_total_cents=900, periodicity_months=1
        )
    )
    movement = book(
        session, checking, bills, MovementType.income_fixed, 900, sub_pocket=rent
    )
    PocketService(session).delete(bills.id)

    bills = open_pocket(session, checking, "Bills", PocketType.fixed)
    rent = SubPocketService(session).create(
        SubPocketIn(
            pocket_id=bills.id, name="Rent", value_total_cents=900, periodicity_months=1
        )
    )
    result = RestorationService(session).restore_orphaned()

    assert result.restored == 1
    restored = MovementService(session).get(movement.id)
    assert restored.pocket_id == bills.id
    assert restored.sub_pocket_id is None
    assert SubPocketService(session).get(rent.id).balance_cents == 0
    assert PocketService(session).get(bills.id).balance_cents == 0


def test_restoration_only_touches_the_callers_orphans() -> None:
    session = make_session()
    for user_id in (1, 2):
        account = open_account(session, "Checking", user_id=user_id)
        pocket = open_pocket(session, account, "Groceries", user_id=user_id)
        book(session, account, pocket, MovementType.income_normal, 10, user_id=user_id)
        PocketService(session, user_id).delete(pocket.id)
        open_pocket(session, account, "Groceries", user_id=user_id)

    result = RestorationService(session, user_id=2).restore_orphaned()

    assert result == RestoreResult(restored=1, failed=0)
    assert len(MovementService(session, 1).orphaned()) == 1
    assert MovementService(session, 2).orphaned() == []


def test_scheduled_sweep_restores_every_user(monkeypatch) -> None:
    SessionLocal = make_sessionmaker()
    with SessionLocal() as session:
        for user_id in (1, 7):
            account = open_account(session, "Checking", user_id=user_id)
            pocket = open_pocket(session, account, "Groceries", user_id=user_id)
            book(
                session, account, pocket, MovementType.income_normal, 25, user_id=user_id
            )
            PocketService(session, user_id).delete(pocket.id)
            open_pocket(session, account, "Groceries", user_id=user_id)

    @contextmanager
    def scope():
        session = SessionLocal()
        try:
            yield session
            session.commit()
        finally:
            session.close()

    monkeypatch.setattr(scheduler, "session_scope", scope)

    restored = scheduler.RestorationScheduler()._run_job("test")

    assert restored == 2
    with SessionLocal() as session:
        assert MovementService(session, 1).orphaned() == []
        assert MovementService(session, 7).orphaned() == []
