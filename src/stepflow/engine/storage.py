"""JSON-file backed persistence for workflow definitions and knowledge entries.

Both stores keep a whole list in one file and rewrite it on every change. That
is plenty for a single user's workflows; a missing or unreadable file is treated
as empty rather than an error so a fresh state directory just works.
"""

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Generic, TypeVar

from pydantic import BaseModel, ValidationError

from stepflow.engine.errors import WorkflowNotFound
from stepflow.engine.workflow.models import KnowledgeEntry, Workflow, now_ms

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class _JsonListStore(ABC, Generic[ModelT]):
    model: type[ModelT]
    label: str

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    @staticmethod
    @abstractmethod
    def _key(item: ModelT) -> str:
        """Id a record is stored under."""

    def _load_unlocked(self) -> list[ModelT]:
        if not self._path.exists():
            return []

        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning(
                f"{self.label} file is not valid JSON; treating as empty",
                extra={"path": str(self._path)},
            )
            return []

        if raw is None:
            return []

        if not isinstance(raw, list):
            logger.warning(
                f"{self.label} file has unexpected shape; treating as empty",
                extra={"path": str(self._path)},
            )
            return []

        items: list[ModelT] = []
        for index, item in enumerate(raw):
            try:
                items.append(self.model.model_validate(item))
            except ValidationError as e:
                logger.warning(
                    f"Skipping invalid {self.label.lower()} record",
                    extra={"path": str(self._path), "index": index, "errors": e.error_count()},
                )
        return items

    def _save_unlocked(self, items: Sequence[ModelT]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = [item.model_dump(mode="json", by_alias=True, exclude_none=True) for item in items]
        self._path.write_text(
            json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8"
        )

    def list(self) -> list[ModelT]:
        with self._lock:
            return self._load_unlocked()

    def get(self, item_id: str) -> ModelT | None:
        with self._lock:
            for item in self._load_unlocked():
                if self._key(item) == item_id:
                    return item
            return None

    def _upsert(
        self,
        record: ModelT,
        merge: Callable[[ModelT, ModelT], ModelT] | None = None,
    ) -> ModelT:
        """Insert ``record`` or replace the stored one with the same id.

        ``merge(existing, record)`` runs under the same lock as the write, so
        fields carried over from the stored record cannot be lost to a
        concurrent save.
        """

        with self._lock:
            items = self._load_unlocked()
            key = self._key(record)
            for idx, item in enumerate(items):
                if self._key(item) == key:
                    if merge is not None:
                        record = merge(item, record)
                    items[idx] = record
                    break
            else:
                items.append(record)
            self._save_unlocked(items)
            return record

    def delete(self, item_id: str) -> bool:
        with self._lock:
            items = self._load_unlocked()
            remaining = [item for item in items if self._key(item) != item_id]
            if len(remaining) == len(items):
                return False
            self._save_unlocked(remaining)
            return True


class WorkflowStore(_JsonListStore[Workflow]):
    """Workflow definitions keyed by id. Saving an existing id replaces it."""

    model = Workflow
    label = "Workflow"

    @staticmethod
    def _key(item: Workflow) -> str:
        return item.id or ""

    def require(self, workflow_id: str) -> Workflow:
        workflow = self.get(workflow_id)
        if workflow is None:
            raise WorkflowNotFound(workflow_id)
        return workflow

    def save(self, workflow: Workflow) -> Workflow:
        stamp = now_ms()
        record = workflow.model_copy(
            update={"id": workflow.id or f"workflow_{stamp}", "updated_at": stamp}
        )
        saved = self._upsert(record)
        logger.info("Workflow saved", extra={"workflow_id": saved.id, "path": str(self.path)})
        return saved


def _keep_created_at(existing: KnowledgeEntry, record: KnowledgeEntry) -> KnowledgeEntry:
    return record.model_copy(update={"created_at": existing.created_at})


class KnowledgeStore(_JsonListStore[KnowledgeEntry]):
    """Knowledge entries; also serves as the run's knowledge source."""

    model = KnowledgeEntry
    label = "Knowledge"

    @staticmethod
    def _key(item: KnowledgeEntry) -> str:
        return item.id

    def save(self, entry: KnowledgeEntry) -> KnowledgeEntry:
        record = entry.model_copy(update={"updated_at": now_ms()})
        saved = self._upsert(record, merge=_keep_created_at)
        logger.info("Knowledge entry saved", extra={"entry_id": saved.id, "path": str(self.path)})
        return saved

    async def list_entries(self) -> list[KnowledgeEntry]:
        return self.list()
