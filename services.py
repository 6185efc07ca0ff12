from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional

from sqlalchemy.orm import Session

import balances
from database import unit_of_work
from errors import ConflictError, NotFoundError, ValidationError
from models import (
    Account,
    AccountType,
    FixedExpenseGroup,
    Movement,
    MovementType,
    Pocket,
    PocketType,
    SubPocket,
)
from repositories import Stores
from schemas import (
    AccountIn,
    AccountUpdate,
    FixedExpenseGroupIn,
    InvestmentUpdate,
    MigratePocketIn,
    MovementIn,
    MovementUpdate,
    PocketIn,
    SubPocketIn,
    SubPocketUpdate,
    TransferIn,
)

logger = logging.getLogger(__name__)


def get_current_user_id() -> int:
    return 1


def _unique(ids: Iterable[Optional[int]]) -> list[int]:
    seen: list[int] = []
    for value in ids:
        if value is not None and value not in seen:
            seen.append(value)
    return seen


def _clean_name(label: str, name: Optional[str]) -> str:
    clean = (name or "").strip()
    if not clean:
        raise ValidationError(f"{label} name cannot be empty", field="name")
    return clean


def _month_start(year: int, month: int) -> date:
    return date(year, month, 1)


def _month_end(year: int, month: int) -> date:
    if month == 12:
        return date(year + 1, 1, 1) - date.resolution
    return date(year, month + 1, 1) - date.resolution


@dataclass(frozen=True)
class RestoreResult:
    restored: int
    failed: int


@dataclass(frozen=True)
class CascadeDeleteResult:
    account: str
    pockets: int
    sub_pockets: int
    movements: int


class _LedgerService:
    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        stores: Optional[Stores] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id if user_id is not None else get_current_user_id()
        self.stores = stores or Stores.for_session(session, self.user_id)

    def _balances(self) -> "BalanceService":
        return BalanceService(self.session, self.user_id, self.stores)

    def _account(self, account_id: Optional[int], label: str = "Account") -> Account:
        account = self.stores.accounts.find_by_id(account_id)
        if not account:
            raise NotFoundError(f"{label} not found", field="account_id")
        return account

    def _pocket(self, pocket_id: Optional[int], label: str = "Pocket") -> Pocket:
        pocket = self.stores.pockets.find_by_id(pocket_id)
        if not pocket:
            raise NotFoundError(f"{label} not found", field="pocket_id")
        return pocket

    def _sub_pocket(self, sub_pocket_id: Optional[int]) -> SubPocket:
        sub_pocket = self.stores.sub_pockets.find_by_id(sub_pocket_id)
        if not sub_pocket:
            raise NotFoundError("SubPocket not found", field="sub_pocket_id")
        return sub_pocket

    def _group(self, group_id: Optional[int]) -> FixedExpenseGroup:
        group = self.stores.groups.find_by_id(group_id)
        if not group:
            raise NotFoundError("Group not found", field="group_id")
        return group


class BalanceService(_LedgerService):
    """
    Re-derives stored balances from the current child sets.

    Reads children through the stores, computes with ``balances`` and writes
    the result back. Callers own the transaction.
    """

    def refresh_sub_pocket(self, sub_pocket_id: int) -> Optional[SubPocket]:
        sub_pocket = self.stores.sub_pockets.find_by_id(sub_pocket_id)
        if not sub_pocket:
            return None
        movements = self.stores.movements.find_by_sub_pocket_id(sub_pocket.id)
        sub_pocket.balance_cents = balances.sub_pocket_balance(movements)
        self.stores.sub_pockets.update(sub_pocket)
        return sub_pocket

    def refresh_pocket(self, pocket_id: int) -> Optional[Pocket]:
        pocket = self.stores.pockets.find_by_id(pocket_id)
        if not pocket:
            return None
        if pocket.is_fixed:
            pocket.balance_cents = balances.pocket_balance(
                pocket, sub_pockets=self.stores.sub_pockets.find_by_pocket_id(pocket.id)
            )
        else:
            pocket.balance_cents = balances.pocket_balance(
                pocket, movements=self.stores.movements.find_by_pocket_id(pocket.id)
            )
        self.stores.pockets.update(pocket)
        return pocket

    def refresh_account(self, account_id: int) -> Optional[Account]:
        account = self.stores.accounts.find_by_id(account_id)
        if not account:
            return None
        pockets = self.stores.pockets.find_by_account_id(account.id)
        account.balance_cents = balances.account_balance(pockets)
        self.stores.accounts.update(account)
        return account

    def refresh(
        self,
        *,
        account_ids: Iterable[Optional[int]] = (),
        pocket_ids: Iterable[Optional[int]] = (),
        sub_pocket_ids: Iterable[Optional[int]] = (),
    ) -> None:
        # Children first: fixed pockets read sub-pocket balances, accounts
        # read pocket balances.
        for sub_pocket_id in _unique(sub_pocket_ids):
            self.refresh_sub_pocket(sub_pocket_id)
        for pocket_id in _unique(pocket_ids):
            self.refresh_pocket(pocket_id)
        for account_id in _unique(account_ids):
            self.refresh_account(account_id)

    def refresh_for_sub_pocket(self, sub_pocket: SubPocket) -> None:
        pocket = self.stores.pockets.find_by_id(sub_pocket.pocket_id)
        self.refresh(
            account_ids=[pocket.account_id if pocket else None],
            pocket_ids=[sub_pocket.pocket_id],
            sub_pocket_ids=[sub_pocket.id],
        )

    def refresh_for_movements(self, *owner_sets: tuple) -> None:
        """Refresh the owners named by ``(account_id, pocket_id, sub_pocket_id)``."""
        self.refresh(
            account_ids=[owners[0] for owners in owner_sets],
            pocket_ids=[owners[1] for owners in owner_sets],
            sub_pocket_ids=[owners[2] for owners in owner_sets],
        )


def _owners(movement: Movement) -> tuple:
    return (movement.account_id, movement.pocket_id, movement.sub_pocket_id)


def _balance_key(movement: Movement) -> tuple:
    return (
        movement.type,
        movement.amount_cents,
        movement.is_pending,
        movement.is_orphaned,
        movement.account_id,
        movement.pocket_id,
        movement.sub_pocket_id,
    )


class AccountService(_LedgerService):
    def list_all(self) -> list[Account]:
        return self.stores.accounts.find_all()

    def get(self, account_id: int) -> Account:
        return self._account(account_id)

    def create(self, data: AccountIn) -> Account:
        name = _clean_name("Account", data.name)
        stock_symbol = (data.stock_symbol or "").strip() or None
        if data.type == AccountType.investment and not stock_symbol:
            raise ValidationError(
                "Investment accounts must have a stock symbol", field="stock_symbol"
            )

        with unit_of_work(self.session):
            if self.stores.accounts.exists_by_name_and_currency(name, data.currency):
                raise ConflictError(
                    f'An account with name "{name}" and currency '
                    f"{data.currency.value} already exists",
                    field="name",
                )
            account = self.stores.accounts.add(
                Account(
                    name=name,
                    color=data.color,
                    currency=data.currency,
                    type=data.type,
                    balance_cents=0,
                    stock_symbol=stock_symbol,
                )
            )
        logger.info(f"account_created: account_id={account.id} user_id={self.user_id}")
        return account

    def update(self, account_id: int, data: AccountUpdate) -> Account:
        name = _clean_name("Account", data.name) if data.name is not None else None

        with unit_of_work(self.session):
            account = self._account(account_id)
            if name is not None and name != account.name:
                if self.stores.accounts.exists_by_name_and_currency(
                    name, account.currency, exclude_id=account.id
                ):
                    raise ConflictError(
                        f'An account with name "{name}" and currency '
                        f"{account.currency.value} already exists",
                        field="name",
                    )
                account.name = name
            if data.color is not None:
                account.color = data.color
            self.stores.accounts.update(account)
        return account

    def update_investment(self, account_id: int, data: InvestmentUpdate) -> Account:
        with unit_of_work(self.session):
            account = self._account(account_id)
            if not account.is_investment:
                raise ValidationError(
                    "Can only update investment details on investment accounts",
                    field="type",
                )
            if data.shares is not None:
                account.shares = data.shares
            if data.invested_cents is not None:
                account.invested_cents = data.invested_cents
            self.stores.accounts.update(account)
        logger.info(
            f"investment_updated: account_id={account.id} user_id={self.user_id}"
        )
        return account

    def delete(self, account_id: int) -> CascadeDeleteResult:
        return OrphaningService(self.session, self.user_id, self.stores).delete_account(
            account_id
        )


class PocketService(_LedgerService):
    def get(self, pocket_id: int) -> Pocket:
        return self._pocket(pocket_id)

    def list_by_account(self, account_id: int) -> list[Pocket]:
        account = self._account(account_id)
        return self.stores.pockets.find_by_account_id(account.id)

    def create(self, data: PocketIn) -> Pocket:
        name = _clean_name("Pocket", data.name)

        with unit_of_work(self.session):
            account = self._account(data.account_id)
            if account.is_investment and data.type == PocketType.fixed:
                raise ValidationError(
                    "Investment accounts cannot have fixed pockets", field="type"
                )
            if self.stores.pockets.exists_by_name_in_account(name, account.id):
                raise ConflictError(
                    f'A pocket with name "{name}" already exists in this account',
                    field="name",
                )
            if (
                data.type == PocketType.fixed
                and self.stores.pockets.exists_fixed_pocket()
            ):
                raise ConflictError(
                    "Only one fixed pocket is allowed per user. "
                    "A fixed pocket already exists.",
                    field="type",
                )
            pocket = self.stores.pockets.add(
                Pocket(
                    account_id=account.id,
                    name=name,
                    type=data.type,
                    balance_cents=0,
                    currency=data.currency or account.currency,
                )
            )
        logger.info(
            f"pocket_created: pocket_id={pocket.id} account_id={account.id} "
            f"type={pocket.type.value}"
        )
        return pocket

    def rename(self, pocket_id: int, name: str) -> Pocket:
        clean = _clean_name("Pocket", name)

        with unit_of_work(self.session):
            pocket = self._pocket(pocket_id)
            if clean != pocket.name and self.stores.pockets.exists_by_name_in_account(
                clean, pocket.account_id, exclude_id=pocket.id
            ):
                raise ConflictError(
                    f'A pocket with name "{clean}" already exists in this account',
                    field="name",
                )
            pocket.name = clean
            self.stores.pockets.update(pocket)
        return pocket

    def delete(self, pocket_id: int) -> int:
        return OrphaningService(self.session, self.user_id, self.stores).delete_pocket(
            pocket_id
        )

    def migrate_fixed_pocket(self, pocket_id: int, data: MigratePocketIn) -> Pocket:
        """
        Move the fixed pocket, and every movement booked on it, to another
        account. Both accounts are re-derived once the move is flushed.
        """
        if data.target_account_id is None:
            raise ValidationError(
                "Target account ID is required", field="target_account_id"
            )

        with unit_of_work(self.session):
            pocket = self._pocket(pocket_id)
            if not pocket.is_fixed:
                raise ValidationError(
                    "Only fixed pockets can be migrated", field="type"
                )
            source = self._account(pocket.account_id, "Source account")
            target = self.stores.accounts.find_by_id(data.target_account_id)
            if not target:
                raise NotFoundError(
                    "Target account not found", field="target_account_id"
                )
            if target.is_investment:
                raise ValidationError(
                    "Cannot migrate fixed pocket to an investment account",
                    field="target_account_id",
                )
            if target.id == source.id:
                raise ValidationError(
                    "Pocket is already in the target account",
                    field="target_account_id",
                )
            if self.stores.pockets.exists_by_name_in_account(pocket.name, target.id):
                raise ConflictError(
                    f'A pocket with name "{pocket.name}" already exists in the '
                    "target account",
                    field="target_account_id",
                )

            moved = self.stores.movements.update_account_id_by_pocket_id(
                pocket.id, target.id
            )
            pocket.account_id = target.id
            self.stores.pockets.update(pocket)

            refresher = self._balances()
            refresher.refresh_account(source.id)
            refresher.refresh_account(target.id)

        logger.info(
            f"pocket_migrated: pocket_id={pocket.id} source_account_id={source.id} "
            f"target_account_id={target.id} movements={moved}"
        )
        return pocket


class SubPocketService(_LedgerService):
    def get(self, sub_pocket_id: int) -> SubPocket:
        return self._sub_pocket(sub_pocket_id)

    def list_by_pocket(self, pocket_id: int) -> list[SubPocket]:
        pocket = self._pocket(pocket_id)
        return self.stores.sub_pockets.find_by_pocket_id(pocket.id)

    def list_by_group(self, group_id: int) -> list[SubPocket]:
        group = self._group(group_id)
        return self.stores.sub_pockets.find_by_group_id(group.id)

    def monthly_contribution(
        self, pocket_id: int, *, enabled_only: bool = True
    ) -> float:
        return balances.monthly_contribution(
            self.list_by_pocket(pocket_id), enabled_only=enabled_only
        )

    def create(self, data: SubPocketIn) -> SubPocket:
        name = _clean_name("SubPocket", data.name)

        with unit_of_work(self.session):
            pocket = self._pocket(data.pocket_id)
            if not pocket.is_fixed:
                raise ValidationError(
                    "SubPockets can only be created in fixed type pockets",
                    field="pocket_id",
                )
            if data.group_id is not None:
                self._group(data.group_id)
            sub_pocket = self.stores.sub_pockets.add(
                SubPocket(
                    pocket_id=pocket.id,
                    name=name,
                    value_total_cents=data.value_total_cents,
                    periodicity_months=data.periodicity_months,
                    balance_cents=0,
                    enabled=True,
                    group_id=data.group_id,
                )
            )
        return sub_pocket

    def update(self, sub_pocket_id: int, data: SubPocketUpdate) -> SubPocket:
        name = _clean_name("SubPocket", data.name) if data.name is not None else None

        with unit_of_work(self.session):
            sub_pocket = self._sub_pocket(sub_pocket_id)
            if name is not None:
                sub_pocket.name = name
            if data.value_total_cents is not None:
                sub_pocket.value_total_cents = data.value_total_cents
            if data.periodicity_months is not None:
                sub_pocket.periodicity_months = data.periodicity_months
            self.stores.sub_pockets.update(sub_pocket)
        return sub_pocket

    def toggle_enabled(self, sub_pocket_id: int) -> SubPocket:
        with unit_of_work(self.session):
            sub_pocket = self._sub_pocket(sub_pocket_id)
            sub_pocket.toggle_enabled()
            self.stores.sub_pockets.update(sub_pocket)
            self._balances().refresh_for_sub_pocket(sub_pocket)
        return sub_pocket

    def move_to_group(self, sub_pocket_id: int, group_id: Optional[int]) -> SubPocket:
        with unit_of_work(self.session):
            sub_pocket = self._sub_pocket(sub_pocket_id)
            if group_id is not None:
                self._group(group_id)
            sub_pocket.group_id = group_id
            self.stores.sub_pockets.update(sub_pocket)
            self._balances().refresh_for_sub_pocket(sub_pocket)
        return sub_pocket

    def delete(self, sub_pocket_id: int) -> None:
        with unit_of_work(self.session):
            sub_pocket = self._sub_pocket(sub_pocket_id)
            if self.stores.sub_pockets.has_movements(sub_pocket.id):
                raise ConflictError(
                    "Cannot delete sub-pocket with existing movements. "
                    "Please delete or reassign movements first.",
                    field="sub_pocket_id",
                )
            pocket_id = sub_pocket.pocket_id
            self.stores.sub_pockets.delete(sub_pocket)
            pocket = self._balances().refresh_pocket(pocket_id)
            if pocket:
                self._balances().refresh_account(pocket.account_id)


class FixedExpenseGroupService(_LedgerService):
    def list_all(self) -> list[FixedExpenseGroup]:
        return self.stores.groups.find_all()

    def get(self, group_id: int) -> FixedExpenseGroup:
        return self._group(group_id)

    def create(self, data: FixedExpenseGroupIn) -> FixedExpenseGroup:
        name = _clean_name("Group", data.name)
        with unit_of_work(self.session):
            display_order = len(self.stores.groups.find_all())
            group = self.stores.groups.add(
                FixedExpenseGroup(
                    name=name, color=data.color, display_order=display_order
                )
            )
        return group

    def update(self, group_id: int, data: FixedExpenseGroupIn) -> FixedExpenseGroup:
        name = _clean_name("Group", data.name)
        with unit_of_work(self.session):
            group = self._group(group_id)
            group.name = name
            group.color = data.color
            self.stores.groups.update(group)
        return group

    def delete(self, group_id: int) -> None:
        """Ungroup every member first; members are never deleted with the group."""
        with unit_of_work(self.session):
            group = self._group(group_id)
            members = self.stores.sub_pockets.find_by_group_id(group.id)
            for sub_pocket in members:
                sub_pocket.group_id = None
                self.stores.sub_pockets.update(sub_pocket)
            self.stores.groups.delete(group)
        logger.info(f"group_deleted: group_id={group_id} ungrouped={len(members)}")

    def toggle(self, group_id: int) -> FixedExpenseGroup:
        """
        Enable every member when any of them is disabled, otherwise disable
        every member. An empty group is left untouched.
        """
        with unit_of_work(self.session):
            group = self._group(group_id)
            members = self.stores.sub_pockets.find_by_group_id(group.id)
            should_enable = any(not sp.enabled for sp in members)
            for sub_pocket in members:
                sub_pocket.enabled = should_enable
                self.stores.sub_pockets.update(sub_pocket)
        return group


class MovementService(_LedgerService):
    def get(self, movement_id: int) -> Movement:
        movement = self.stores.movements.find_by_id(movement_id)
        if not movement:
            raise NotFoundError(
                f"Movement with ID {movement_id} not found", field="movement_id"
            )
        return movement

    def list_by_account(self, account_id: int) -> list[Movement]:
        account = self._account(account_id)
        return self.stores.movements.find_by_account_id(account.id)

    def list_by_pocket(self, pocket_id: int) -> list[Movement]:
        pocket = self._pocket(pocket_id)
        return self.stores.movements.find_by_pocket_id(pocket.id)

    def pending(self) -> list[Movement]:
        return self.stores.movements.find_pending()

    def orphaned(self) -> list[Movement]:
        return self.stores.movements.find_orphaned()

    def list_by_month(
        self,
        year: int,
        month: int,
        *,
        account_id: Optional[int] = None,
        pocket_id: Optional[int] = None,
        pending: Optional[bool] = None,
    ) -> list[Movement]:
        if not 1900 <= year <= 2100:
            raise ValidationError(
                "Invalid year - must be between 1900 and 2100", field="year"
            )
        if not 1 <= month <= 12:
            raise ValidationError(
                "Invalid month - must be between 1 and 12", field="month"
            )
        return self.stores.movements.find_by_month(
            _month_start(year, month),
            _month_end(year, month),
            account_id=account_id,
            pocket_id=pocket_id,
            is_pending=pending,
        )

    def _verify_owners(
        self, account_id: int, pocket_id: int, sub_pocket_id: Optional[int]
    ) -> None:
        self._account(account_id)
        pocket = self._pocket(pocket_id)
        if pocket.account_id != account_id:
            raise ValidationError(
                "Pocket does not belong to the specified account", field="pocket_id"
            )
        if sub_pocket_id is None:
            return
        sub_pocket = self._sub_pocket(sub_pocket_id)
        if sub_pocket.pocket_id != pocket_id:
            raise ValidationError(
                "SubPocket does not belong to the specified pocket",
                field="sub_pocket_id",
            )
        if not pocket.is_fixed:
            raise ValidationError(
                "SubPockets can only be used with fixed type pockets",
                field="sub_pocket_id",
            )

    def create(self, data: MovementIn) -> Movement:
        with unit_of_work(self.session):
            self._verify_owners(data.account_id, data.pocket_id, data.sub_pocket_id)
            movement = self.stores.movements.add(
                Movement(
                    type=data.type,
                    account_id=data.account_id,
                    pocket_id=data.pocket_id,
                    sub_pocket_id=data.sub_pocket_id,
                    amount_cents=data.amount_cents,
                    displayed_date=data.displayed_date,
                    notes=data.notes,
                    is_pending=data.is_pending,
                    is_orphaned=False,
                )
            )
            if not movement.is_pending:
                self._balances().refresh_for_movements(_owners(movement))
        return movement

    def update(self, movement_id: int, data: MovementUpdate) -> Movement:
        fields = data.model_fields_set

        with unit_of_work(self.session):
            movement = self.get(movement_id)
            before_owners = _owners(movement)
            before_key = _balance_key(movement)

            reattaching = fields & {"account_id", "pocket_id", "sub_pocket_id"}
            if reattaching and movement.is_orphaned:
                raise ValidationError(
                    "Orphaned movements can only be reattached by restoration",
                    field=sorted(reattaching)[0],
                )

            if "type" in fields and data.type is not None:
                movement.type = data.type
            if "amount_cents" in fields and data.amount_cents is not None:
                movement.amount_cents = data.amount_cents
            if "displayed_date" in fields and data.displayed_date is not None:
                movement.displayed_date = data.displayed_date
            if "notes" in fields:
                movement.notes = data.notes
            if "account_id" in fields and data.account_id is not None:
                movement.account_id = data.account_id
            if "pocket_id" in fields and data.pocket_id is not None:
                movement.pocket_id = data.pocket_id
            if "sub_pocket_id" in fields:
                movement.sub_pocket_id = data.sub_pocket_id

            if reattaching:
                self._verify_owners(
                    movement.account_id, movement.pocket_id, movement.sub_pocket_id
                )
            self.stores.movements.update(movement)

            if _balance_key(movement) != before_key:
                self._balances().refresh_for_movements(
                    before_owners, _owners(movement)
                )
        return movement

    def delete(self, movement_id: int) -> None:
        with unit_of_work(self.session):
            movement = self.get(movement_id)
            owners = _owners(movement)
            was_orphaned = movement.is_orphaned
            self.stores.movements.delete(movement)
            if not was_orphaned:
                self._balances().refresh_for_movements(owners)
        logger.info(
            f"movement_deleted: movement_id={movement_id} user_id={self.user_id}"
        )

    def mark_as_pending(self, movement_id: int) -> Movement:
        with unit_of_work(self.session):
            movement = self.get(movement_id)
            movement.mark_as_pending()
            self.stores.movements.update(movement)
            self._balances().refresh_for_movements(_owners(movement))
        return movement

    def apply_pending(self, movement_id: int) -> Movement:
        with unit_of_work(self.session):
            movement = self.get(movement_id)
            movement.apply_pending()
            self.stores.movements.update(movement)
            self._balances().refresh_for_movements(_owners(movement))
        return movement

    def create_transfer(self, data: TransferIn) -> tuple[Movement, Movement]:
        """Book an expense on the source pocket and a matching income on the target."""
        if (
            data.source_account_id == data.target_account_id
            and data.source_pocket_id == data.target_pocket_id
        ):
            raise ValidationError(
                "Source and target pockets must be different", field="target_pocket_id"
            )

        with unit_of_work(self.session):
            source_pocket = self._pocket(data.source_pocket_id, "Source pocket")
            target_pocket = self._pocket(data.target_pocket_id, "Target pocket")
            self._verify_owners(data.source_account_id, source_pocket.id, None)
            self._verify_owners(data.target_account_id, target_pocket.id, None)

            suffix = f": {data.notes}" if data.notes else ""
            expense = self.stores.movements.add(
                Movement(
                    type=MovementType.expense_normal,
                    account_id=data.source_account_id,
                    pocket_id=source_pocket.id,
                    amount_cents=data.amount_cents,
                    displayed_date=data.displayed_date,
                    notes=f"Transfer to {target_pocket.name}{suffix}",
                    is_pending=False,
                    is_orphaned=False,
                )
            )
            income = self.stores.movements.add(
                Movement(
                    type=MovementType.income_normal,
                    account_id=data.target_account_id,
                    pocket_id=target_pocket.id,
                    amount_cents=data.amount_cents,
                    displayed_date=data.displayed_date,
                    notes=f"Transfer from {source_pocket.name}{suffix}",
                    is_pending=False,
                    is_orphaned=False,
                )
            )
            self._balances().refresh_for_movements(_owners(expense), _owners(income))
        return expense, income


class OrphaningService(_LedgerService):
    """
    Deletes pockets and accounts without losing their movements.

    Every movement of the deleted entity is first turned into an orphan that
    carries a name/currency snapshot of its former owners; only then are the
    rows removed. Each deletion is a single unit of work.
    """

    def _orphan_pocket_movements(
        self, pocket: Pocket, account: Optional[Account]
    ) -> int:
        movements = self.stores.movements.mark_as_orphaned_by_pocket_id(
            pocket.id,
            pocket.name,
            account.name if account else None,
            account.currency if account else None,
        )
        return len(movements)

    def _remove_pocket(self, pocket: Pocket) -> int:
        sub_pockets = self.stores.sub_pockets.find_by_pocket_id(pocket.id)
        for sub_pocket in sub_pockets:
            self.stores.sub_pockets.delete(sub_pocket)
        self.stores.pockets.delete(pocket)
        return len(sub_pockets)

    def delete_pocket(self, pocket_id: int) -> int:
        with unit_of_work(self.session):
            pocket = self._pocket(pocket_id)
            account = self.stores.accounts.find_by_id(pocket.account_id)
            orphaned = self._orphan_pocket_movements(pocket, account)
            self._remove_pocket(pocket)
            if account:
                self._balances().refresh_account(account.id)
        logger.info(f"pocket_deleted: pocket_id={pocket_id} orphaned={orphaned}")
        return orphaned

    def delete_account(self, account_id: int) -> CascadeDeleteResult:
        with unit_of_work(self.session):
            account = self._account(account_id)
            account_name = account.name
            pockets = self.stores.pockets.find_by_account_id(account.id)

            orphaned = 0
            for pocket in pockets:
                orphaned += self._orphan_pocket_movements(pocket, account)
            stragglers = self.stores.movements.mark_as_orphaned_by_account_id(
                account.id, account.name, account.currency
            )
            orphaned += len(stragglers)

            sub_pockets = 0
            for pocket in pockets:
                sub_pockets += self._remove_pocket(pocket)
            self.stores.accounts.delete(account)

        logger.info(
            f"account_deleted: account_id={account_id} pockets={len(pockets)} "
            f"sub_pockets={sub_pockets} orphaned={orphaned}"
        )
        return CascadeDeleteResult(
            account=account_name,
            pockets=len(pockets),
            sub_pockets=sub_pockets,
            movements=orphaned,
        )


class RestorationService(_LedgerService):
    """
    Reattaches orphaned movements to live accounts and pockets.

    A movement is restored when exactly one account matches its snapshot
    name and currency and that account holds a pocket with the snapshot
    pocket name. Sub-pocket links are not recovered. The batch is
    best-effort: each movement that cannot be matched, or whose update
    raises, is counted as failed and left orphaned.
    """

    @staticmethod
    def _match_account(
        accounts: list[Account], movement: Movement
    ) -> Optional[Account]:
        matches = [
            account
            for account in accounts
            if account.name == movement.orphaned_account_name
            and account.currency == movement.orphaned_account_currency
        ]
        if len(matches) != 1:
            return None
        return matches[0]

    @staticmethod
    def _match_pocket(
        pockets: list[Pocket], account: Account, movement: Movement
    ) -> Optional[Pocket]:
        for pocket in pockets:
            if (
                pocket.account_id == account.id
                and pocket.name == movement.orphaned_pocket_name
            ):
                return pocket
        return None

    def restore_orphaned(self) -> RestoreResult:
        with unit_of_work(self.session):
            orphans = self.stores.movements.find_orphaned()
            accounts = self.stores.accounts.find_all()
            pockets = self.stores.pockets.find_all()

            restored = 0
            failed = 0
            account_ids: set[int] = set()
            pocket_ids: set[int] = set()

            for movement in orphans:
                movement_id = movement.id
                try:
                    account = self._match_account(accounts, movement)
                    if account is None:
                        failed += 1
                        logger.info(
                            f"restore_skipped: movement_id={movement_id} "
                            f"reason=no_account"
                        )
                        continue
                    pocket = self._match_pocket(pockets, account, movement)
                    if pocket is None:
                        failed += 1
                        logger.info(
                            f"restore_skipped: movement_id={movement_id} "
                            f"reason=no_pocket"
                        )
                        continue
                    with self.session.begin_nested():
                        movement.restore_from_orphaned(account.id, pocket.id)
                        self.stores.movements.update(movement)
                except Exception:
                    failed += 1
                    logger.warning(
                        f"restore_failed: movement_id={movement_id}", exc_info=True
                    )
                    continue

                restored += 1
                account_ids.add(account.id)
                pocket_ids.add(pocket.id)

            # Restored movements carry no sub-pocket, so no sub-pocket balance moves.
            self._balances().refresh(
                account_ids=sorted(account_ids), pocket_ids=sorted(pocket_ids)
            )

        logger.info(
            f"restore_completed: user_id={self.user_id} restored={restored} "
            f"failed={failed}"
        )
        return RestoreResult(restored=restored, failed=failed)
