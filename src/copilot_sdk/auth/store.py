"""Durable storage for the credential record.

The record lives in a single JSON file.  Writes go to a temporary file in the
same directory and are moved into place with ``os.replace`` while holding an
advisory lock on a sibling ``.lock`` file, so a reader never observes a
half-written record.  Processes that refresh concurrently are still
last-writer-wins.
"""

from __future__ import annotations

import json
import logging
import os
from contextlib import contextmanager
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Iterator

from copilot_sdk.errors import AuthenticationError, CredentialStoreError
from copilot_sdk.types import CredentialRecord

try:
    import fcntl
except ImportError:  # Windows
    fcntl = None  # type: ignore[assignment]

_logger = logging.getLogger(__name__)


class CredentialStore:
    """Read/write one :class:`CredentialRecord` at *path*."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()

    @property
    def lock_path(self) -> Path:
        return self.path.with_name(f"{self.path.name}.lock")

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> CredentialRecord:
        """Read the record.

        Raises :class:`AuthenticationError` when the file is absent and
        :class:`CredentialStoreError` when it cannot be read or parsed.
        """
        if not self.path.is_file():
            raise AuthenticationError(
                "Auth file not found. Run 'copilot-sdk auth' to authenticate "
                f"first.\nExpected file: {self.path}"
            )
        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise CredentialStoreError(
                f"Cannot read auth file {self.path}: {exc.strerror}"
            ) from exc
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise CredentialStoreError(
                f"Auth file {self.path} is not valid JSON. "
                "Delete it and run 'copilot-sdk auth' again."
            ) from exc
        if not isinstance(payload, dict):
            raise CredentialStoreError(
                f"Auth file {self.path} does not contain a JSON object"
            )
        try:
            return CredentialRecord.from_dict(payload)
        except (ValueError, TypeError) as exc:
            raise CredentialStoreError(
                f"Auth file {self.path} has an invalid field ({exc}). "
                "Delete it and run 'copilot-sdk auth' again."
            ) from exc

    def save(self, record: CredentialRecord) -> None:
        """Persist the full record, creating the directory on demand."""
        content = json.dumps(record.to_dict(), indent=2) + "\n"
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self._locked():
                self._write_atomic(content)
        except OSError as exc:
            raise CredentialStoreError(
                f"Cannot write auth file {self.path}: {exc.strerror or exc}"
            ) from exc
        _logger.debug("Saved credential record to %s", self.path)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _write_atomic(self, content: str) -> None:
        tmp_path = ""
        with NamedTemporaryFile(
            "w", delete=False, dir=str(self.path.parent),
            prefix=f".{self.path.name}.", encoding="utf-8",
        ) as tmp:
            tmp.write(content)
            tmp_path = tmp.name
        try:
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.path)
        finally:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)

    @contextmanager
    def _locked(self) -> Iterator[None]:
        with open(self.lock_path, "a+", encoding="utf-8") as lock_file:
            if fcntl is None:
                # No advisory locks on this platform; rely on os.replace only.
                yield
                return
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
