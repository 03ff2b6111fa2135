"""
Durable storage of the current credential pair.

The record is a single JSON file readable and writable only by its owner;
directories the store creates for it are owner-only too. Writes go to a temp
file that is moved over the record with `os.replace`, so a concurrent reader
sees either the old or the new record, never a partial one.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Optional

from .. import config as config_mod
from ..aio import run_blocking
from ..errors import TokenStoreError
from ..log_utils import default_logger
from .models import StoredTokens

_DIR_MODE = 0o700
_FILE_MODE = 0o600


class TokenStore:
    def __init__(self, path: Optional[Path] = None, *, log: Optional[logging.LoggerAdapter] = None) -> None:
        self.path = Path(path).expanduser() if path is not None else config_mod.get_token_store_path()
        self._log = log or default_logger("watts_home.api_auth.token_store")

    @classmethod
    def for_storage_dir(cls, storage_dir: Path, *, log: Optional[logging.LoggerAdapter] = None) -> "TokenStore":
        """Store under a composing application's storage directory."""
        return cls(config_mod.get_token_store_path(storage_dir), log=log)

    def load_sync(self) -> Optional[StoredTokens]:
        """
        Load the record. Returns None if the file does not exist or is invalid.
        """
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            self._log.warning("token record at %s is unreadable: %s", self.path, e)
            return None
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            self._log.warning("token record at %s is not valid JSON; ignoring it", self.path)
            return None
        tokens = StoredTokens.from_dict(data)
        if tokens is None:
            self._log.warning("token record at %s is missing required fields; ignoring it", self.path)
        return tokens

    def save_sync(self, tokens: StoredTokens) -> None:
        """
        Save with atomic replace and restrictive permissions.

        The file is 0o600. Directories created here are 0o700; an existing
        parent directory is left as it is. Raises TokenStoreError on failure.
        """
        try:
            self._ensure_parent()
            self._write_atomic(tokens)
        except OSError as e:
            raise TokenStoreError(f"Could not save tokens to {self.path}: {e.strerror or e}") from e
        self._log.debug("saved token record to %s", self.path)

    def _ensure_parent(self) -> None:
        missing = []
        parent = self.path.parent
        while not parent.exists():
            missing.append(parent)
            parent = parent.parent
        for directory in reversed(missing):
            directory.mkdir(mode=_DIR_MODE, exist_ok=True)
            # mkdir's mode is filtered by the umask.
            directory.chmod(_DIR_MODE)

    def _write_atomic(self, tokens: StoredTokens) -> None:
        tmp_path = self.path.with_suffix(self.path.suffix + f".{os.getpid()}.tmp")
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, _FILE_MODE)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(tokens.to_dict(), fh, indent=2)
                fh.flush()
                os.fsync(fh.fileno())
            os.chmod(tmp_path, _FILE_MODE)
            os.replace(tmp_path, self.path)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise

    def clear_sync(self) -> bool:
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        self._log.debug("removed token record at %s", self.path)
        return True

    async def load(self) -> Optional[StoredTokens]:
        return await run_blocking(self.load_sync)

    async def save(self, tokens: StoredTokens) -> None:
        await run_blocking(self.save_sync, tokens)

    async def clear(self) -> bool:
        return await run_blocking(self.clear_sync)


__all__ = ["TokenStore"]
