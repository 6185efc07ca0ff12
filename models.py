import re
from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, validates

from database import Base
from errors import ValidationError

HEX_COLOR_RE = re.compile(r"^#[0-9A-Fa-f]{6}$")


class CurrencyCode(str, Enum):
    usd = "USD"
    mxn = "MXN"
    cop = "COP"
    eur = "EUR"
    gbp = "GBP"


CURRENCY_CODE_ENUM = SAEnum(
    CurrencyCode,
    name="currencycode",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
)


class AccountType(str, Enum):
    normal = "normal"
    investment = "investment"


class PocketType(str, Enum):
    normal = "normal"
    fixed = "fixed"


class MovementType(str, Enum):
    income_normal = "IngresoNormal"
    expense_normal = "EgresoNormal"
    income_fixed = "IngresoFijo"
    expense_fixed = "EgresoFijo"

    @property
    def is_income(self) -> bool:
        return self in (MovementType.income_normal, MovementType.income_fixed)


MOVEMENT_TYPE_ENUM = SAEnum(
    MovementType,
    name="movementtype",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
)

# Stand-ins written into an orphan snapshot when the owner could not be read.
UNKNOWN_NAME = "Unknown"


def _require_name(label: str, value: Optional[str]) -> str:
    if value is None or not value.strip():
        raise ValidationError(f"{label} name cannot be empty", field="name")
    return value.strip()


def _require_color(value: Optional[str]) -> str:
    if not value or not HEX_COLOR_RE.match(value):
        raise ValidationError(
            "Invalid color format - must be hex format like #3b82f6", field="color"
        )
    return value


def _non_negative(field: str, value):
    if value is not None and value < 0:
        raise ValidationError(f"{field} cannot be negative", field=field)
    return value


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    color: Mapped[str] = mapped_column(String(7), nullable=False)
    currency: Mapped[CurrencyCode] = mapped_column(CURRENCY_CODE_ENUM, nullable=False)
    type: Mapped[AccountType] = mapped_column(
        SAEnum(AccountType), nullable=False, default=AccountType.normal
    )
    balance_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    stock_symbol: Mapped[Optional[str]] = mapped_column(String(20))
    shares: Mapped[Optional[float]] = mapped_column(Float)
    invested_cents: Mapped[Optional[int]] = mapped_column(Integer)
    display_order: Mapped[Optional[int]] = mapped_column(Integer)

    __table_args__ = (
        UniqueConstraint(
            "user_id", "name", "currency", name="uq_account_user_name_currency"
        ),
    )

    @validates("name")
    def _validate_name(self, _key, value):
        return _require_name("Account", value)

    @validates("color")
    def _validate_color(self, _key, value):
        return _require_color(value)

    @validates("shares", "invested_cents", "display_order")
    def _validate_non_negative(self, key, value):
        return _non_negative(key, value)

    @property
    def is_investment(self) -> bool:
        return self.type == AccountType.investment


class Pocket(Base, TimestampMixin):
    __tablename__ = "pockets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[PocketType] = mapped_column(SAEnum(PocketType), nullable=False)
    balance_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    currency: Mapped[CurrencyCode] = mapped_column(CURRENCY_CODE_ENUM, nullable=False)
    display_order: Mapped[Optional[int]] = mapped_column(Integer)

    __table_args__ = (
        UniqueConstraint(
            "user_id", "account_id", "name", name="uq_pocket_user_account_name"
        ),
        Index(
            "uq_pocket_one_fixed_per_user",
            "user_id",
            unique=True,
            sqlite_where=text("type = 'fixed'"),
            postgresql_where=text("type = 'fixed'"),
        ),
        Index("ix_pockets_user_account", "user_id", "account_id"),
    )

    @validates("name")
    def _validate_name(self, _key, value):
        return _require_name("Pocket", value)

    @validates("display_order")
    def _validate_display_order(self, key, value):
        return _non_negative(key, value)

    @property
    def is_fixed(self) -> bool:
        return self.type == PocketType.fixed


class FixedExpenseGroup(Base, TimestampMixin):
    __tablename__ = "fixed_expense_groups"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    color: Mapped[str] = mapped_column(String(7), nullable=False)
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    @validates("name")
    def _validate_name(self, _key, value):
        return _require_name("Group", value)

    @validates("color")
    def _validate_color(self, _key, value):
        return _require_color(value)


class SubPocket(Base, TimestampMixin):
    __tablename__ = "sub_pockets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    pocket_id: Mapped[int] = mapped_column(ForeignKey("pockets.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    value_total_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    periodicity_months: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    group_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("fixed_expense_groups.id")
    )
    display_order: Mapped[Optional[int]] = mapped_column(Integer)

    __table_args__ = (
        CheckConstraint("value_total_cents > 0", name="ck_sub_pocket_value_positive"),
        CheckConstraint(
            "periodicity_months > 0", name="ck_sub_pocket_periodicity_positive"
        ),
        Index("ix_sub_pockets_user_pocket", "user_id", "pocket_id"),
        Index("ix_sub_pockets_user_group", "user_id", "group_id"),
    )

    @validates("name")
    def _validate_name(self, _key, value):
        return _require_name("SubPocket", value)

    @validates("value_total_cents")
    def _validate_value_total(self, _key, value):
        if value is None or value <= 0:
            raise ValidationError(
                "Value total must be positive", field="value_total_cents"
            )
        return value

    @validates("periodicity_months")
    def _validate_periodicity(self, _key, value):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(
                "Periodicity months must be an integer", field="periodicity_months"
            )
        if value <= 0:
            raise ValidationError(
                "Periodicity months must be positive", field="periodicity_months"
            )
        return value

    @validates("display_order")
    def _validate_display_order(self, key, value):
        return _non_negative(key, value)

    @property
    def monthly_contribution_cents(self) -> float:
        return self.value_total_cents / self.periodicity_months

    def toggle_enabled(self) -> None:
        self.enabled = not self.enabled


class Movement(Base, TimestampMixin):
    __tablename__ = "movements"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    type: Mapped[MovementType] = mapped_column(MOVEMENT_TYPE_ENUM, nullable=False)
    account_id: Mapped[Optional[int]] = mapped_column(ForeignKey("accounts.id"))
    pocket_id: Mapped[Optional[int]] = mapped_column(ForeignKey("pockets.id"))
    sub_pocket_id: Mapped[Optional[int]] = mapped_column(ForeignKey("sub_pockets.id"))
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    displayed_date: Mapped[date] = mapped_column(Date, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    is_pending: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_orphaned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    orphaned_account_name: Mapped[Optional[str]] = mapped_column(String(100))
    orphaned_account_currency: Mapped[Optional[CurrencyCode]] = mapped_column(
        CURRENCY_CODE_ENUM
    )
    orphaned_pocket_name: Mapped[Optional[str]] = mapped_column(String(100))

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_movements_amount_positive"),
        CheckConstraint(
            "is_orphaned OR (account_id IS NOT NULL AND pocket_id IS NOT NULL)",
            name="ck_movements_owner_unless_orphaned",
        ),
        Index("ix_movements_user_account", "user_id", "account_id"),
        Index("ix_movements_user_pocket", "user_id", "pocket_id"),
        Index("ix_movements_user_sub_pocket", "user_id", "sub_pocket_id"),
        Index("ix_movements_user_orphaned", "user_id", "is_orphaned"),
        Index("ix_movements_user_pending", "user_id", "is_pending"),
    )

    @validates("amount_cents")
    def _validate_amount(self, _key, value):
        if value is None or value <= 0:
            raise ValidationError(
                "Movement amount must be positive", field="amount_cents"
            )
        return value

    @property
    def is_income(self) -> bool:
        return MovementType(self.type).is_income

    @property
    def signed_amount_cents(self) -> int:
        return self.amount_cents if self.is_income else -self.amount_cents

    def mark_as_pending(self) -> None:
        if self.is_orphaned:
            raise ValidationError("Orphaned movements cannot be marked as pending")
        if self.is_pending:
            raise ValidationError("Movement is already pending")
        self.is_pending = True

    def apply_pending(self) -> None:
        if self.is_orphaned:
            raise ValidationError("Orphaned movements cannot be applied")
        if not self.is_pending:
            raise ValidationError("Movement is not pending")
        self.is_pending = False

    def mark_as_orphaned(
        self,
        account_name: Optional[str],
        account_currency: Optional[CurrencyCode],
        pocket_name: Optional[str],
    ) -> None:
        self.is_orphaned = True
        self.orphaned_account_name = account_name or UNKNOWN_NAME
        self.orphaned_account_currency = account_currency or CurrencyCode.usd
        self.orphaned_pocket_name = pocket_name or UNKNOWN_NAME
        self.account_id = None
        self.pocket_id = None
        self.sub_pocket_id = None

    def restore_from_orphaned(
        self, account_id: int, pocket_id: int, sub_pocket_id: Optional[int] = None
    ) -> None:
        if not self.is_orphaned:
            raise ValidationError("Movement is not orphaned")
        self.account_id = account_id
        self.pocket_id = pocket_id
        self.sub_pocket_id = sub_pocket_id
        self.is_orphaned = False
        self.is_pending = False
        self.orphaned_account_name = None
        self.orphaned_account_currency = None
        self.orphaned_pocket_name = None
