"""
Tenant-scoped stores over a SQLAlchemy session.

Every store is bound to one ``user_id``. Lookups of a row owned by another
user return ``None`` exactly like a missing row, so callers cannot tell the
two apart. Writes only flush; committing is left to the unit of work that
wraps the calling use case.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Optional

from sqlalchemy import distinct, select, update
from sqlalchemy.orm import Session

from models import (
    Account,
    CurrencyCode,
    FixedExpenseGroup,
    Movement,
    Pocket,
    PocketType,
    SubPocket,
)


class _Store:
    model: type

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def find_by_id(self, entity_id: Optional[int]):
        if entity_id is None:
            return None
        entity = self.session.get(self.model, entity_id)
        if not entity or entity.user_id != self.user_id:
            return None
        return entity

    def add(self, entity):
        entity.user_id = self.user_id
        self.session.add(entity)
        self.session.flush()
        return entity

    def update(self, entity):
        if entity.user_id != self.user_id:
            raise ValueError(f"{self.model.__name__} belongs to another user")
        self.session.flush()
        return entity

    def delete(self, entity) -> None:
        if entity.user_id != self.user_id:
            raise ValueError(f"{self.model.__name__} belongs to another user")
        self.session.delete(entity)
        self.session.flush()


class AccountRepository(_Store):
    model = Account

    def find_all(self) -> list[Account]:
        stmt = (
            select(Account)
            .where(Account.user_id == self.user_id)
            .order_by(Account.display_order.asc().nulls_last(), Account.id.asc())
        )
        return self.session.scalars(stmt).all()

    def exists_by_name_and_currency(
        self,
        name: str,
        currency: CurrencyCode,
        *,
        exclude_id: Optional[int] = None,
    ) -> bool:
        stmt = select(Account.id).where(
            Account.user_id == self.user_id,
            Account.name == name,
            Account.currency == currency,
        )
        if exclude_id is not None:
            stmt = stmt.where(Account.id != exclude_id)
        return bool(self.session.scalar(select(stmt.exists())))


class PocketRepository(_Store):
    model = Pocket

    def find_all(self) -> list[Pocket]:
        stmt = (
            select(Pocket)
            .where(Pocket.user_id == self.user_id)
            .order_by(Pocket.account_id.asc(), Pocket.id.asc())
        )
        return self.session.scalars(stmt).all()

    def find_by_account_id(self, account_id: int) -> list[Pocket]:
        stmt = (
            select(Pocket)
            .where(Pocket.user_id == self.user_id, Pocket.account_id == account_id)
            .order_by(Pocket.display_order.asc().nulls_last(), Pocket.id.asc())
        )
        return self.session.scalars(stmt).all()

    def exists_by_name_in_account(
        self, name: str, account_id: int, *, exclude_id: Optional[int] = None
    ) -> bool:
        stmt = select(Pocket.id).where(
            Pocket.user_id == self.user_id,
            Pocket.account_id == account_id,
            Pocket.name == name,
        )
        if exclude_id is not None:
            stmt = stmt.where(Pocket.id != exclude_id)
        return bool(self.session.scalar(select(stmt.exists())))

    def exists_fixed_pocket(self) -> bool:
        stmt = select(Pocket.id).where(
            Pocket.user_id == self.user_id, Pocket.type == PocketType.fixed
        )
        return bool(self.session.scalar(select(stmt.exists())))


class SubPocketRepository(_Store):
    model = SubPocket

    def find_by_pocket_id(self, pocket_id: int) -> list[SubPocket]:
        stmt = (
            select(SubPocket)
            .where(SubPocket.user_id == self.user_id, SubPocket.pocket_id == pocket_id)
            .order_by(SubPocket.display_order.asc().nulls_last(), SubPocket.id.asc())
        )
        return self.session.scalars(stmt).all()

    def find_by_group_id(self, group_id: int) -> list[SubPocket]:
        stmt = (
            select(SubPocket)
            .where(SubPocket.user_id == self.user_id, SubPocket.group_id == group_id)
            .order_by(SubPocket.display_order.asc().nulls_last(), SubPocket.id.asc())
        )
        return self.session.scalars(stmt).all()

    def has_movements(self, sub_pocket_id: int) -> bool:
        stmt = select(Movement.id).where(
            Movement.user_id == self.user_id,
            Movement.sub_pocket_id == sub_pocket_id,
        )
        return bool(self.session.scalar(select(stmt.exists())))


class FixedExpenseGroupRepository(_Store):
    model = FixedExpenseGroup

    def find_all(self) -> list[FixedExpenseGroup]:
        stmt = (
            select(FixedExpenseGroup)
            .where(FixedExpenseGroup.user_id == self.user_id)
            .order_by(FixedExpenseGroup.display_order.asc(), FixedExpenseGroup.id.asc())
        )
        return self.session.scalars(stmt).all()


class MovementRepository(_Store):
    model = Movement

    def _select(self):
        return select(Movement).where(Movement.user_id == self.user_id)

    def _ordered(self, stmt) -> list[Movement]:
        stmt = stmt.order_by(Movement.displayed_date.desc(), Movement.id.desc())
        return self.session.scalars(stmt).all()

    def find_orphaned(self) -> list[Movement]:
        return self._ordered(self._select().where(Movement.is_orphaned.is_(True)))

    def find_pending(self) -> list[Movement]:
        return self._ordered(
            self._select().where(
                Movement.is_pending.is_(True), Movement.is_orphaned.is_(False)
            )
        )

    def find_by_account_id(self, account_id: int) -> list[Movement]:
        return self._ordered(self._select().where(Movement.account_id == account_id))

    def find_by_pocket_id(self, pocket_id: int) -> list[Movement]:
        return self._ordered(self._select().where(Movement.pocket_id == pocket_id))

    def find_by_sub_pocket_id(self, sub_pocket_id: int) -> list[Movement]:
        return self._ordered(
            self._select().where(Movement.sub_pocket_id == sub_pocket_id)
        )

    def find_by_month(
        self,
        start: date,
        end: date,
        *,
        account_id: Optional[int] = None,
        pocket_id: Optional[int] = None,
        is_pending: Optional[bool] = None,
    ) -> list[Movement]:
        stmt = self._select().where(
            Movement.displayed_date >= start, Movement.displayed_date <= end
        )
        if account_id is not None:
            stmt = stmt.where(Movement.account_id == account_id)
        if pocket_id is not None:
            stmt = stmt.where(Movement.pocket_id == pocket_id)
        if is_pending is not None:
            stmt = stmt.where(Movement.is_pending.is_(is_pending))
        return self._ordered(stmt)

    def mark_as_orphaned_by_pocket_id(
        self,
        pocket_id: int,
        pocket_name: str,
        account_name: Optional[str] = None,
        account_currency: Optional[CurrencyCode] = None,
    ) -> list[Movement]:
        """
        Orphan every movement of a pocket, one update per movement.

        Returns the movements that were orphaned; an empty pocket issues no
        updates at all.
        """
        movements = self.find_by_pocket_id(pocket_id)
        for movement in movements:
            movement.mark_as_orphaned(account_name, account_currency, pocket_name)
            self.update(movement)
        return movements

    def mark_as_orphaned_by_account_id(
        self,
        account_id: int,
        account_name: str,
        account_currency: CurrencyCode,
    ) -> list[Movement]:
        movements = self.find_by_account_id(account_id)
        for movement in movements:
            pocket = (
                self.session.get(Pocket, movement.pocket_id)
                if movement.pocket_id
                else None
            )
            pocket_name = pocket.name if pocket else None
            movement.mark_as_orphaned(account_name, account_currency, pocket_name)
            self.update(movement)
        return movements

    def update_account_id_by_pocket_id(
        self, pocket_id: int, new_account_id: int
    ) -> int:
        result = self.session.execute(
            update(Movement)
            .where(Movement.user_id == self.user_id, Movement.pocket_id == pocket_id)
            .values(account_id=new_account_id)
            .execution_options(synchronize_session="fetch")
        )
        self.session.flush()
        return result.rowcount or 0

    @staticmethod
    def user_ids_with_orphans(session: Session) -> list[int]:
        stmt = (
            select(distinct(Movement.user_id))
            .where(Movement.is_orphaned.is_(True))
            .order_by(Movement.user_id)
        )
        return list(session.scalars(stmt).all())


@dataclass
class Stores:
    accounts: AccountRepository
    pockets: PocketRepository
    sub_pockets: SubPocketRepository
    groups: FixedExpenseGroupRepository
    movements: MovementRepository

    @classmethod
    def for_session(cls, session: Session, user_id: int) -> "Stores":
        return cls(
            accounts=AccountRepository(session, user_id),
            pockets=PocketRepository(session, user_id),
            sub_pockets=SubPocketRepository(session, user_id),
            groups=FixedExpenseGroupRepository(session, user_id),
            movements=MovementRepository(session, user_id),
        )
