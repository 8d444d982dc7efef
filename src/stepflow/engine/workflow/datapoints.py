"""Per-run data point working set."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping
from typing import Any

from pydantic import ValidationError

from .models import DataPoint, DataPointType, KnowledgeEntry, now_ms

logger = logging.getLogger(__name__)


class DataPointStore:
    """Ordered, append-only collection of data points for one run.

    Ids are unique: a second data point with an id already present is rejected and
    the first one stays visible. Nothing is ever updated or removed.
    """

    def __init__(self, data_points: Iterable[DataPoint] = ()) -> None:
        self._items: dict[str, DataPoint] = {}
        for dp in data_points:
            self.add(dp)

    def add(self, data_point: DataPoint) -> bool:
        if data_point.id in self._items:
            logger.warning(
                "Duplicate data point id ignored",
                extra={"data_point_id": data_point.id, "source": data_point.source},
            )
            return False
        self._items[data_point.id] = data_point
        return True

    def get(self, data_point_id: str) -> DataPoint | None:
        return self._items.get(data_point_id)

    def find_by_prefix(self, prefix: str) -> DataPoint | None:
        """First data point (in insertion order) whose id starts with ``prefix``."""

        for dp_id, dp in self._items.items():
            if dp_id.startswith(prefix):
                return dp
        return None

    def find_by_source(self, source: str) -> DataPoint | None:
        for dp in self._items.values():
            if dp.source == source:
                return dp
        return None

    def ids(self) -> list[str]:
        return list(self._items)

    def snapshot(self) -> list[DataPoint]:
        return list(self._items.values())

    def __contains__(self, data_point_id: object) -> bool:
        return data_point_id in self._items

    def __iter__(self) -> Iterator[DataPoint]:
        return iter(list(self._items.values()))

    def __len__(self) -> int:
        return len(self._items)


def coerce_context_records(records: Iterable[DataPoint | Mapping[str, Any]]) -> list[DataPoint]:
    """Turn host context records into data points, dropping malformed ones."""

    out: list[DataPoint] = []
    for record in records:
        if isinstance(record, DataPoint):
            out.append(record)
            continue
        try:
            out.append(DataPoint.model_validate(record))
        except ValidationError as e:
            logger.warning(
                "Context record is not a valid data point; skipping",
                extra={"record_id": record.get("id"), "errors": e.error_count()},
            )
    return out


def knowledge_data_points(entries: Iterable[KnowledgeEntry]) -> list[DataPoint]:
    return [entry.to_data_point() for entry in entries]


def task_output_data_point(step_id: str, value: Any) -> DataPoint:
    return DataPoint(
        id=f"{step_id}_output",
        name=f"Output of {step_id}",
        type=DataPointType.TASK_OUTPUT,
        value=value,
        source=step_id,
        timestamp=now_ms(),
    )
