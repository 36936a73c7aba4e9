"""Balance computation package."""

from billsplit.balances.cache import BalanceCache
from billsplit.balances.calculator import (
    DELTA_TOLERANCE,
    SETTLEMENT_TOLERANCE,
    BalanceCalculator,
    format_balance,
    get_creditors,
    get_debtors,
    get_unsettled_balances,
    get_user_balance,
    is_settled,
)

__all__ = [
    "DELTA_TOLERANCE",
    "SETTLEMENT_TOLERANCE",
    "BalanceCache",
    "BalanceCalculator",
    "format_balance",
    "get_creditors",
    "get_debtors",
    "get_unsettled_balances",
    "get_user_balance",
    "is_settled",
]
