"""
Append-Only File (AOF) persistence.
Every applied write is logged so a restarted node recovers its data.
"""

import json
import logging
import os
import threading
import time
from typing import Any, Callable, Optional
from dataclasses import dataclass


@dataclass
class AOFEntry:
    """A single AOF log entry."""
    timestamp: float
    key: str
    value: str
    version: int

    def to_line(self) -> str:
        """Convert to AOF line format."""
        return json.dumps({
            "ts": self.timestamp,
            "key": self.key,
            "val": self.value,
            "ver": self.version
        })

    @classmethod
    def from_line(cls, line: str) -> 'AOFEntry':
        """Parse from AOF line format."""
        data = json.loads(line.strip())
        return cls(
            timestamp=data["ts"],
            key=data["key"],
            value=data["val"],
            version=data["ver"]
        )


class AOFPersistence:
    """
    Append-only log in <data_dir>/appendonly.aof.

    Each append is flushed to the OS immediately, so a killed process loses
    nothing the kernel already holds; fsync runs periodically and on close.
    """

    def __init__(self, data_dir: str, fsync_interval: float = 1.0):
        self.data_dir = data_dir
        self.fsync_interval = fsync_interval
        self.aof_path = os.path.join(data_dir, "appendonly.aof")

        self._file: Optional[Any] = None
        self._lock = threading.Lock()
        self._last_fsync = time.time()
        self.logger = logging.getLogger("minicluster.store.aof")

        os.makedirs(data_dir, exist_ok=True)
        torn = self._ends_mid_line()
        self._file = open(self.aof_path, "a", encoding="utf-8")
        if torn:
            # Keep the next entry off the partial line left by a killed process
            self._file.write("\n")
            self._file.flush()

    def _ends_mid_line(self) -> bool:
        if not os.path.exists(self.aof_path) or os.path.getsize(self.aof_path) == 0:
            return False
        with open(self.aof_path, "rb") as f:
            f.seek(-1, os.SEEK_END)
            return f.read(1) != b"\n"

    def append(self, key: str, value: str, version: int):
        entry = AOFEntry(timestamp=time.time(), key=key, value=value, version=version)

        with self._lock:
            if self._file is None:
                raise ValueError("AOF is closed")
            self._file.write(entry.to_line() + "\n")
            self._file.flush()
            if time.time() - self._last_fsync > self.fsync_interval:
                self._do_fsync()

    def _do_fsync(self):
        os.fsync(self._file.fileno())
        self._last_fsync = time.time()

    def replay(self, apply_func: Callable[[AOFEntry], None]) -> int:
        """
        Replay AOF entries.

        A torn final line (process killed mid-write) and other corrupted
        lines are skipped with a warning.

        Returns:
            Number of entries replayed
        """
        if not os.path.exists(self.aof_path):
            return 0

        count = 0
        corrupted_lines = 0

        with open(self.aof_path, "r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    entry = AOFEntry.from_line(line)
                except (json.JSONDecodeError, KeyError, TypeError) as e:
                    corrupted_lines += 1
                    self.logger.warning(f"Corrupted AOF line {line_num}: {e}")
                    continue
                apply_func(entry)
                count += 1

        if corrupted_lines > 0:
            self.logger.warning(f"AOF replay: {count} entries applied, "
                                f"{corrupted_lines} corrupted lines skipped")
        return count

    def close(self):
        with self._lock:
            if self._file:
                self._file.flush()
                self._do_fsync()
                self._file.close()
                self._file = None

    def get_size(self) -> int:
        if os.path.exists(self.aof_path):
            return os.path.getsize(self.aof_path)
        return 0
