from __future__ import annotations

import copy
import json
import logging
import os
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from app.schemas.complaint import EnhancedComplaintContext

logger = logging.getLogger(__name__)

Record = dict[str, Any]


class ComplaintStore:
    """Key-value store of complaint records keyed by complaint id.

    With ``directory`` set every record is written to ``<directory>/<id>.json``
    so retry counters and dialogue state survive a restart; otherwise records
    live in memory only.
    """

    def __init__(self, directory: str | Path | None = None) -> None:
        self._records: dict[str, Record] = {}
        self._dir = Path(directory) if directory else None
        if self._dir is not None:
            self._dir.mkdir(parents=True, exist_ok=True)

    def _path(self, complaint_id: str) -> Path | None:
        """File backing the record, or None for an in-memory store."""
        if self._dir is None:
            return None
        safe = "".join(ch for ch in complaint_id if ch.isalnum() or ch in "-_")
        return self._dir / f"{safe}.json"

    def _read(self, complaint_id: str) -> Record | None:
        if complaint_id in self._records:
            return self._records[complaint_id]
        path = self._path(complaint_id)
        if path is None or not path.exists():
            return None
        record = json.loads(path.read_text(encoding="utf-8"))
        self._records[complaint_id] = record
        return record

    def _write(self, complaint_id: str, record: Record) -> None:
        record["updated_at"] = datetime.now(timezone.utc).isoformat()
        self._records[complaint_id] = record
        path = self._path(complaint_id)
        if path is None:
            return
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(record, ensure_ascii=False, default=str), encoding="utf-8")
        os.replace(tmp, path)

    def get(self, complaint_id: str) -> Record | None:
        record = self._read(complaint_id)
        return copy.deepcopy(record) if record is not None else None

    def update(self, complaint_id: str, fields: Record) -> None:
        record = self._read(complaint_id) or {"complaint_id": complaint_id}
        record.update(copy.deepcopy(fields))
        self._write(complaint_id, record)

    def modify(self, complaint_id: str, func: Callable[[Record], Record | None]) -> Record:
        """Read-modify-write of a whole record. ``func`` may mutate in place or return a new dict."""
        record = copy.deepcopy(self._read(complaint_id) or {"complaint_id": complaint_id})
        result = func(record)
        if result is not None:
            record = result
        self._write(complaint_id, record)
        return copy.deepcopy(record)

    def increment(self, complaint_id: str, field: str, amount: int = 1) -> int:
        record = self.modify(
            complaint_id, lambda r: r.update({field: int(r.get(field, 0)) + amount})
        )
        return record[field]

    def append(self, complaint_id: str, field: str, item: Any) -> None:
        def _append(record: Record) -> None:
            record.setdefault(field, []).append(copy.deepcopy(item))

        self.modify(complaint_id, _append)

    def save_context(self, context: EnhancedComplaintContext) -> None:
        answered = len(context.answered_turns)
        self.update(
            context.complaint_id,
            {
                "context": context.model_dump(mode="json"),
                "final_confidence": context.final_confidence,
                "question_flow_completed": context.ready,
                "questions_asked": len(context.conversation_history),
                "questions_answered": answered,
            },
        )
        logger.debug(
            "Saved context for complaint %s (%d turns, %d answered)",
            context.complaint_id,
            len(context.conversation_history),
            answered,
        )

    def load_context(self, complaint_id: str) -> EnhancedComplaintContext | None:
        record = self._read(complaint_id)
        if not record or not record.get("context"):
            return None
        return EnhancedComplaintContext.model_validate(record["context"])
