from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models import AccountType, CurrencyCode, MovementType, PocketType

HEX_COLOR_PATTERN = r"^#[0-9A-Fa-f]{6}$"


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    color: str = Field(..., pattern=HEX_COLOR_PATTERN)
    currency: CurrencyCode
    type: AccountType = AccountType.normal
    stock_symbol: Optional[str] = Field(default=None, max_length=20)


class AccountUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    color: Optional[str] = Field(default=None, pattern=HEX_COLOR_PATTERN)


class InvestmentUpdate(BaseModel):
    shares: Optional[float] = Field(default=None, ge=0)
    invested_cents: Optional[int] = Field(default=None, ge=0)


class PocketIn(BaseModel):
    account_id: int
    name: str = Field(..., min_length=1, max_length=100)
    type: PocketType
    currency: Optional[CurrencyCode] = None


class MigratePocketIn(BaseModel):
    target_account_id: Optional[int] = None


class SubPocketIn(BaseModel):
    pocket_id: int
    name: str = Field(..., min_length=1, max_length=100)
    value_total_cents: int = Field(..., gt=0)
    periodicity_months: int = Field(..., gt=0)
    group_id: Optional[int] = None


class SubPocketUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    value_total_cents: Optional[int] = Field(default=None, gt=0)
    periodicity_months: Optional[int] = Field(default=None, gt=0)


class FixedExpenseGroupIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    color: str = Field(..., pattern=HEX_COLOR_PATTERN)


class MovementIn(BaseModel):
    type: MovementType
    account_id: int
    pocket_id: int
    sub_pocket_id: Optional[int] = None
    amount_cents: int = Field(..., gt=0)
    displayed_date: date
    notes: Optional[str] = Field(default=None, max_length=500)
    is_pending: bool = False


class MovementUpdate(BaseModel):
    """Partial update; only fields present in the payload are applied."""

    model_config = ConfigDict(extra="forbid")

    type: Optional[MovementType] = None
    account_id: Optional[int] = None
    pocket_id: Optional[int] = None
    sub_pocket_id: Optional[int] = None
    amount_cents: Optional[int] = Field(default=None, gt=0)
    displayed_date: Optional[date] = None
    notes: Optional[str] = Field(default=None, max_length=500)


class TransferIn(BaseModel):
    source_account_id: int
    source_pocket_id: int
    target_account_id: int
    target_pocket_id: int
    amount_cents: int = Field(..., gt=0)
    displayed_date: date
    notes: Optional[str] = Field(default=None, max_length=500)
