"""Append-only JSON-lines log of finished task results."""
from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, List, Union

import structlog

from artomart.core.models import Task, iso_timestamp

log = structlog.get_logger(__name__)


class ResultJournal:
    """Records completed and failed tasks. Write failures are logged, not raised."""

    def __init__(self, path: Union[str, Path]) -> None:
        self._path = Path(path)
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    async def record(self, task: Task) -> None:
        entry = task.to_dict()
        entry["finishedAt"] = iso_timestamp(task.finished_at) if task.finished_at else None
        line = json.dumps(entry, default=str)
        async with self._lock:
            try:
                await asyncio.to_thread(self._append, line)
            except OSError as exc:
                log.warning("journal.write.failed", path=str(self._path), error=str(exc))

    def read_all(self) -> List[Dict[str, Any]]:
        if not self._path.exists():
            return []
        with self._path.open(encoding="utf-8") as handle:
            return [json.loads(line) for line in handle if line.strip()]

    def _append(self, line: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")
