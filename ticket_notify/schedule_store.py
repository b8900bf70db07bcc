from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List

from .backends import CollectionBackend, YamlFileBackend
from .config import load_config
from .errors import StoreUnavailable
from .models import ScheduledNotification

logger = logging.getLogger(__name__)

COLLECTION = "schedules"


class ScheduleStore:
    """Durable mapping of task id to its pending :class:`ScheduledNotification`.

    At most one record exists per task id. Each operation reads the
    collection fresh from the backend; nothing is cached between calls. When
    the backend is unavailable operations are logged and degrade to no-ops.
    """

    def __init__(
        self,
        backend: CollectionBackend | None = None,
        *,
        path: str | Path | None = None,
    ) -> None:
        if backend is None:
            if path is None:
                path = load_config().get("data_dir")
            backend = YamlFileBackend(path)
        self.backend = backend

    @staticmethod
    def _decode(items: Iterable[Dict[str, Any]]) -> List[ScheduledNotification]:
        records: List[ScheduledNotification] = []
        for item in items:
            try:
                records.append(ScheduledNotification.from_dict(item))
            except (KeyError, TypeError, ValueError):
                logger.warning("Skipping malformed schedule entry: %r", item)
        return records

    def list(self) -> List[ScheduledNotification]:
        try:
            return self._decode(self.backend.read(COLLECTION))
        except StoreUnavailable:
            logger.exception("Schedule store unavailable; returning no schedules")
            return []

    def get(self, task_id: str) -> ScheduledNotification | None:
        for record in self.list():
            if record.task_id == task_id:
                return record
        return None

    def _update(self, func, action: str) -> None:
        try:
            self.backend.update(COLLECTION, func)
        except StoreUnavailable:
            logger.exception("Schedule store unavailable; %s skipped", action)

    def upsert_by_task(self, record: ScheduledNotification) -> None:
        """Replace any schedule for ``record.task_id`` with ``record``."""

        def replace(items):
            kept = [i for i in items if i.get("taskId") != record.task_id]
            kept.append(record.to_dict())
            return kept

        self._update(replace, f"upsert of task {record.task_id}")
        logger.debug("Schedule stored task=%s at=%s", record.task_id, record.scheduled_time)

    def remove_by_task(self, task_id: str) -> None:
        self._update(
            lambda items: [i for i in items if i.get("taskId") != task_id],
            f"removal of task {task_id}",
        )

    def remove_by_id(self, schedule_id: str) -> None:
        self.remove_many([schedule_id])

    def remove_many(self, schedule_ids: Iterable[str]) -> None:
        ids = set(schedule_ids)
        if not ids:
            return
        self._update(
            lambda items: [i for i in items if i.get("id") not in ids],
            f"removal of {len(ids)} schedules",
        )

    def clear(self) -> None:
        self._update(lambda items: [], "clear")


__all__ = ["ScheduleStore"]
