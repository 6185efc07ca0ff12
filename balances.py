"""
Balance derivation for the Account -> Pocket -> SubPocket hierarchy.

Every function here is pure: it takes the current child set and returns a
number in cents. Fetching children and writing results back is the caller's
job (see ``services.BalanceService``).
"""

from typing import Iterable, Optional

from models import Movement, Pocket, PocketType, SubPocket


def signed_amount(movement: Movement) -> int:
    return movement.signed_amount_cents


def counts_toward_balance(movement: Movement) -> bool:
    return not movement.is_pending and not movement.is_orphaned


def movements_balance(movements: Iterable[Movement]) -> int:
    return sum(signed_amount(m) for m in movements if counts_toward_balance(m))


def sub_pocket_balance(movements: Iterable[Movement]) -> int:
    return movements_balance(movements)


def pocket_balance(
    pocket: Pocket,
    movements: Optional[Iterable[Movement]] = None,
    sub_pockets: Optional[Iterable[SubPocket]] = None,
) -> int:
    # Fixed pockets are funded by their sub-pockets, which may be negative.
    if pocket.type == PocketType.fixed:
        if sub_pockets is None:
            raise ValueError("Sub-pockets are required for fixed pockets")
        return sum(sp.balance_cents or 0 for sp in sub_pockets)
    if movements is None:
        raise ValueError("Movements are required for normal pockets")
    return movements_balance(movements)


def account_balance(pockets: Iterable[Pocket]) -> int:
    return sum(p.balance_cents or 0 for p in pockets)


def monthly_contribution(
    sub_pockets: Iterable[SubPocket], *, enabled_only: bool = False
) -> float:
    return sum(
        sp.monthly_contribution_cents
        for sp in sub_pockets
        if sp.enabled or not enabled_only
    )

