"""
Ledger package.

The store and its encodings live here. The mutation pipeline sits on
top of the balance calculator, so import it from
`billsplit.ledger.pipeline` directly.
"""

from billsplit.ledger.codecs import (
    CODECS,
    DocumentCodec,
    LedgerCodec,
    LedgerParseError,
    TabularCodec,
    codec_for,
)
from billsplit.ledger.store import LedgerStore

__all__ = [
    "CODECS",
    "DocumentCodec",
    "LedgerCodec",
    "LedgerParseError",
    "LedgerStore",
    "TabularCodec",
    "codec_for",
]
