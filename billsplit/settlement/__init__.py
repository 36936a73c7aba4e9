"""Settlement planning package."""

from billsplit.settlement.algorithm import (
    SETTLEMENT_COMMENT,
    SettlementAlgorithm,
    SettlementRejectedError,
)

__all__ = [
    "SETTLEMENT_COMMENT",
    "SettlementAlgorithm",
    "SettlementRejectedError",
]
