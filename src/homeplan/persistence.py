"""JSON file persistence for templates, homes, tasks and punch items."""

from __future__ import annotations

import fcntl
import json
import os
import tempfile
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path

from homeplan.models import Database

DEFAULT_DB_FILE = "homeplan.json"

_locks: dict[Path, threading.Lock] = {}
_locks_guard = threading.Lock()


def _lock_for(path: Path) -> threading.Lock:
    with _locks_guard:
        return _locks.setdefault(path.resolve(), threading.Lock())


class Store:
    """Reads and writes the planning database (JSON file)."""

    def __init__(self, db_path: str | Path = DEFAULT_DB_FILE):
        self.db_path = Path(db_path)
        self.lock_path = self.db_path.with_name(f"{self.db_path.name}.lock")
        self._lock = _lock_for(self.db_path)

    def load(self) -> Database:
        if not self.db_path.exists():
            return Database()
        return Database.from_dict(json.loads(self.db_path.read_text()))

    def save(self, db: Database) -> None:
        """Persist *db*, replacing the file in one step."""
        payload = json.dumps(db.to_dict(), indent=4)
        directory = self.db_path.parent.resolve()
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=directory, prefix=f".{self.db_path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(payload)
            os.replace(tmp, self.db_path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        # The thread lock orders writers inside this process; flock on the
        # sidecar file orders them against other processes (CLI, MCP server).
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock, open(self.lock_path, "a") as lf:
            fcntl.flock(lf.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lf.fileno(), fcntl.LOCK_UN)

    @contextmanager
    def transaction(self) -> Iterator[Database]:
        """Load, hand out and save the database as one unit of work.

        The file is only rewritten when the block exits cleanly. An exclusive
        lock is held throughout, so transactions against the same file never
        interleave, whether they run in other threads or other processes.
        Transactions do not nest.
        """
        with self._exclusive():
            db = self.load()
            yield db
            self.save(db)

    @staticmethod
    def generate_id(prefix: str, existing: Iterable[str]) -> str:
        """Generate the next ``<prefix>-N`` id."""
        numbers = []
        for key in existing:
            head, _, tail = key.rpartition("-")
            if head == prefix and tail.isdigit():
                numbers.append(int(tail))
        return f"{prefix}-{max(numbers, default=0) + 1}"
