from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from database import Base
from errors import ConflictError, ErrorKind, NotFoundError, ValidationError
from models import CurrencyCode, MovementType, PocketType
from schemas import (
    AccountIn,
    FixedExpenseGroupIn,
    MovementIn,
    PocketIn,
    SubPocketIn,
    SubPocketUpdate,
)
from services import (
    AccountService,
    FixedExpenseGroupService,
    MovementService,
    PocketService,
    SubPocketService,
)


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def fixed_pocket(session):
    account = AccountService(session).create(
        AccountIn(name="Main", color="#3b82f6", currency=CurrencyCode.usd)
    )
    pocket = PocketService(session).create(
        PocketIn(account_id=account.id, name="Bills", type=PocketType.fixed)
    )
    return account, pocket


def grouped_sub_pockets(session, names=("Netflix", "Spotify", "Gym")):
    _account, pocket = fixed_pocket(session)
    group = FixedExpenseGroupService(session).create(
        FixedExpenseGroupIn(name="Subscriptions", color="#a855f7")
    )
    subs = [
        SubPocketService(session).create(
            SubPocketIn(
                pocket_id=pocket.id,
                name=name,
                value_total_cents=1200,
                periodicity_months=12,
                group_id=group.id,
            )
        )
        for name in names
    ]
    return group, subs


def test_group_toggle_enables_all_when_any_is_disabled() -> None:
    session = make_session()
    group, subs = grouped_sub_pockets(session)
    SubPocketService(session).toggle_enabled(subs[2].id)

    FixedExpenseGroupService(session).toggle(group.id)

    members = SubPocketService(session).list_by_group(group.id)
    assert [sp.enabled for sp in members] == [True, True, True]


def test_group_toggle_disables_all_when_all_are_enabled() -> None:
    session = make_session()
    group, _subs = grouped_sub_pockets(session)

    FixedExpenseGroupService(session).toggle(group.id)

    members = SubPocketService(session).list_by_group(group.id)
    assert [sp.enabled for sp in members] == [False, False, False]


def test_toggling_empty_group_returns_it_unchanged() -> None:
    session = make_session()
    group = FixedExpenseGroupService(session).create(
        FixedExpenseGroupIn(name="Empty", color="#000000")
    )

    toggled = FixedExpenseGroupService(session).toggle(group.id)

    assert toggled.id == group.id
    assert SubPocketService(session).list_by_group(group.id) == []


def test_deleting_group_ungroups_members() -> None:
    session = make_session()
    group, subs = grouped_sub_pockets(session)

    FixedExpenseGroupService(session).delete(group.id)

    for sub in subs:
        assert SubPocketService(session).get(sub.id).group_id is None
    with pytest.raises(NotFoundError, match="Group not found"):
        FixedExpenseGroupService(session).get(group.id)


def test_move_sub_pocket_between_groups() -> None:
    session = make_session()
    group, subs = grouped_sub_pockets(session, names=("Phone",))
    other = FixedExpenseGroupService(session).create(
        FixedExpenseGroupIn(name="Utilities", color="#eab308")
    )

    SubPocketService(session).move_to_group(subs[0].id, other.id)
    assert [sp.id for sp in SubPocketService(session).list_by_group(other.id)] == [
        subs[0].id
    ]
    assert SubPocketService(session).list_by_group(group.id) == []

    SubPocketService(session).move_to_group(subs[0].id, None)
    assert SubPocketService(session).get(subs[0].id).group_id is None

    with pytest.raises(NotFoundError) as excinfo:
        SubPocketService(session).move_to_group(subs[0].id, 999)
    assert excinfo.value.kind == ErrorKind.not_found


def test_group_of_another_user_is_not_found() -> None:
    session = make_session()
    group = FixedExpenseGroupService(session).create(
        FixedExpenseGroupIn(name="Private", color="#000000")
    )

    with pytest.raises(NotFoundError):
        FixedExpenseGroupService(session, user_id=2).toggle(group.id)
    assert FixedExpenseGroupService(session, user_id=2).list_all() == []


def test_sub_pocket_requires_fixed_pocket() -> None:
    session = make_session()
    account = AccountService(session).create(
        AccountIn(name="Main", color="#3b82f6", currency=CurrencyCode.usd)
    )
    pocket = PocketService(session).create(
        PocketIn(account_id=account.id, name="Spending", type=PocketType.normal)
    )

    with pytest.raises(ValidationError, match="fixed type pockets"):
        SubPocketService(session).create(
            SubPocketIn(
                pocket_id=pocket.id,
                name="Rent",
                value_total_cents=100,
                periodicity_months=1,
            )
        )


def test_sub_pocket_with_movements_cannot_be_deleted() -> None:
    session = make_session()
    account, pocket = fixed_pocket(session)
    rent = SubPocketService(session).create(
        SubPocketIn(
            pocket_id=pocket.id, name="Rent", value_total_cents=900, periodicity_months=1
        )
    )
    spare = SubPocketService(session).create(
        SubPocketIn(
            pocket_id=pocket.id, name="Spare", value_total_cents=10, periodicity_months=1
        )
    )
    MovementService(session).create(
        MovementIn(
            type=MovementType.income_fixed,
            account_id=account.id,
            pocket_id=pocket.id,
            sub_pocket_id=rent.id,
            amount_cents=900,
            displayed_date=date(2025, 7, 1),
        )
    )

    with pytest.raises(
        ConflictError, match="Cannot delete sub-pocket with existing movements"
    ):
        SubPocketService(session).delete(rent.id)

    SubPocketService(session).delete(spare.id)
    assert [sp.id for sp in SubPocketService(session).list_by_pocket(pocket.id)] == [
        rent.id
    ]
    assert PocketService(session).get(pocket.id).balance_cents == 900


def test_sub_pocket_update_validates_values() -> None:
    session = make_session()
    _account, pocket = fixed_pocket(session)
    rent = SubPocketService(session).create(
        SubPocketIn(
            pocket_id=pocket.id, name="Rent", value_total_cents=900, periodicity_months=1
        )
    )

    updated = SubPocketService(session).update(
        rent.id, SubPocketUpdate(name="  Flat  ", periodicity_months=3)
    )

    assert updated.name == "Flat"
    assert updated.periodicity_months == 3
    assert updated.monthly_contribution_cents == 300
    with pytest.raises(ValidationError, match="SubPocket name cannot be empty"):
        SubPocketService(session).update(rent.id, SubPocketUpdate(name="   "))
