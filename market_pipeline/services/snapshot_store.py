from __future__ import annotations

import json
import threading
from pathlib import Path

from market_pipeline.errors import StorageError
from market_pipeline.schemas.snapshot import SnapshotRow


class SnapshotTable:
    """Append-only market snapshot history stored as JSON lines."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()
        self.inserted = 0

    def insert_many(self, rows: list[SnapshotRow]) -> int:
        if not rows:
            return 0

        lines = "".join(json.dumps(row.model_dump(), ensure_ascii=False) + "\n" for row in rows)
        with self._lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as f:
                    f.write(lines)
            except OSError as exc:
                raise StorageError(f"snapshot insert failed: {exc}") from exc
            self.inserted += len(rows)
        return len(rows)

    def read_all(self) -> list[SnapshotRow]:
        if not self.path.exists():
            return []

        rows: list[SnapshotRow] = []
        for line in self.path.read_text(encoding="utf-8").splitlines():
            if not line.strip():
                continue
            try:
                rows.append(SnapshotRow.model_validate(json.loads(line)))
            except (json.JSONDecodeError, ValueError):
                continue
        return rows
