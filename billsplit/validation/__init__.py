"""Bill validation package."""

from billsplit.validation.validator import BillValidator

__all__ = ["BillValidator"]
