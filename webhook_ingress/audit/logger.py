"""Webhook audit trail: append-only JSON Lines, size rotation, SHA-256 hash chain.

Several processes (uvicorn ``--workers N``) may append to the same file. The
chain head is therefore always read from disk while holding the lock, never
from per-process memory.
"""

from __future__ import annotations

import fcntl
import hashlib
import json
import os
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from webhook_ingress.models import AuditEvent

_TAIL_BLOCK = 4096


@dataclass
class ChainValidationResult:
    valid: bool
    broken_at_line: int | None = None


def _line_hash(line: str) -> str:
    return hashlib.sha256(line.encode()).hexdigest()


def _tail(path: Path) -> str | None:
    """Return the last line of ``path``, reading backwards from the end."""
    try:
        f = open(path, "rb")
    except FileNotFoundError:
        return None
    with f:
        pos = f.seek(0, os.SEEK_END)
        buf = b""
        while pos > 0:
            step = min(_TAIL_BLOCK, pos)
            pos -= step
            f.seek(pos)
            buf = f.read(step) + buf
            parts = buf.rstrip(b"\n").rsplit(b"\n", 1)
            if len(parts) == 2:
                return parts[1].decode()
        buf = buf.strip()
        return buf.decode() if buf else None


def validate_audit_chain(log_path: Path) -> ChainValidationResult:
    """Check that each entry's prev_hash matches the line before it."""
    text = log_path.read_text().strip()
    if not text:
        return ChainValidationResult(valid=True)

    previous: str | None = None
    for number, line in enumerate(text.split("\n"), start=1):
        expected = _line_hash(previous) if previous is not None else None
        if json.loads(line).get("prev_hash") != expected:
            return ChainValidationResult(valid=False, broken_at_line=number)
        previous = line
    return ChainValidationResult(valid=True)


class AuditLogger:
    """Writes webhook accept/reject events for operators.

    The first line of a fresh chain has ``prev_hash: null``. After a rotation
    the new file chains from the last line of ``<name>.1``; with
    ``backup_count=0`` the old file is dropped and a new chain starts.

    ``log`` does blocking file I/O; async callers should run it in a thread.
    """

    def __init__(
        self,
        log_path: str,
        max_bytes: int = 10_485_760,
        backup_count: int = 5,
    ) -> None:
        self.log_path = Path(log_path)
        self._max_bytes = max_bytes
        self._backup_count = backup_count
        self._lock_path = self.log_path.with_name(f".{self.log_path.name}.lock")

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        with open(self._lock_path, "a") as lock:
            fcntl.flock(lock, fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lock, fcntl.LOCK_UN)

    def _backup(self, index: int) -> Path:
        return self.log_path.with_name(f"{self.log_path.name}.{index}")

    def _chain_head(self) -> str | None:
        head = _tail(self.log_path)
        if head is None and self._backup_count:
            head = _tail(self._backup(1))
        return head

    def _rotate_if_full(self) -> bool:
        try:
            size = self.log_path.stat().st_size
        except FileNotFoundError:
            return False
        if size < self._max_bytes:
            return False
        if self._backup_count == 0:
            self.log_path.unlink()
            return True
        self._backup(self._backup_count).unlink(missing_ok=True)
        for index in range(self._backup_count - 1, 0, -1):
            if self._backup(index).exists():
                self._backup(index).rename(self._backup(index + 1))
        self.log_path.rename(self._backup(1))
        return True

    def log(self, event: AuditEvent) -> None:
        entry = json.loads(event.model_dump_json())
        self.log_path.parent.mkdir(parents=True, exist_ok=True)

        with self._exclusive():
            head = self._chain_head()
            if self._rotate_if_full() and self._backup_count == 0:
                head = None
            entry["prev_hash"] = _line_hash(head) if head is not None else None
            with open(self.log_path, "a") as f:
                f.write(json.dumps(entry, separators=(",", ":")) + "\n")
