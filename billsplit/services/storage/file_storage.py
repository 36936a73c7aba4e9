"""
File-backed ledger storage.

The encoding follows the file suffix (.pcsv / .pson), falling back to
the configured default. Saves write a temp file beside the target and
swap it in with os.replace, so a crash mid-save never leaves a
half-written ledger behind.
"""

import os
import tempfile
from pathlib import Path
from typing import Optional, Union

import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from billsplit.config import get_settings
from billsplit.ledger.codecs import CODECS, LedgerCodec, codec_for
from billsplit.ledger.store import LedgerStore
from billsplit.models.ledger import LedgerMeta, utc_now
from billsplit.services.storage.interface import (
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
)


logger = structlog.get_logger(__name__)


class FileLedgerStorage(LedgerStorageInterface):
    """Ledger kept in a single file on disk."""

    def __init__(
        self,
        path: Union[str, Path],
        encoding: Optional[str] = None,
        create_missing: bool = True,
    ):
        self.path = Path(path)
        self.create_missing = create_missing
        self._settings = get_settings().ledger
        if encoding is not None:
            if encoding not in CODECS:
                raise ValueError(f"Unknown ledger encoding: {encoding}")
            self.codec: LedgerCodec = CODECS[encoding]
        else:
            self.codec = codec_for(self.path, default=self._settings.default_encoding)

    @property
    def source(self) -> str:
        return str(self.path)

    async def load(self) -> LedgerStore:
        if not self.path.exists():
            if not self.create_missing:
                raise NotFoundError(f"Ledger file not found: {self.path}")
            logger.info("ledger_file_missing", path=str(self.path))
            self.last_load_error = None
            return LedgerStore(meta=LedgerMeta(version=self._settings.format_version))

        try:
            content = self._read()
        except OSError as e:
            raise StorageError(f"Could not read ledger {self.path}: {e}") from e

        store = self._decode_or_empty(self.codec, content)
        logger.info(
            "ledger_file_loaded",
            path=str(self.path),
            codec=self.codec.name,
            bill_count=len(store.get_bills()),
        )
        return store

    async def save(self, store: LedgerStore) -> bool:
        store.meta.modified = utc_now()
        content = self.codec.encode(store)
        try:
            self._write_atomic(content)
        except OSError as e:
            raise StorageError(f"Could not write ledger {self.path}: {e}") from e

        logger.info(
            "ledger_file_saved",
            path=str(self.path),
            codec=self.codec.name,
            revision=store.revision,
        )
        return True

    @retry(
        retry=retry_if_exception_type(OSError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.1, min=0.1, max=1),
        reraise=True,
    )
    def _read(self) -> str:
        return self.path.read_text(encoding="utf-8")

    @retry(
        retry=retry_if_exception_type(OSError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.1, min=0.1, max=1),
        reraise=True,
    )
    def _write_atomic(self, content: str) -> None:
        fd, tmp_name = tempfile.mkstemp(
            dir=self.path.parent,
            prefix=f".{self.path.name}.",
            suffix=".tmp",
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
                handle.write(content)
            os.replace(tmp_name, self.path)
        except OSError:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
