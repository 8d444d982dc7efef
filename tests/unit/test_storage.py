"""Unit tests for the JSON-file workflow and knowledge stores."""

from __future__ import annotations

import json
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest
from factories import task_step, workflow_json

from stepflow.engine.errors import WorkflowNotFound
from stepflow.engine.storage import KnowledgeStore, WorkflowStore, _JsonListStore
from stepflow.engine.workflow.models import KnowledgeEntry, Workflow


def test_missing_file_is_empty(tmp_path: Path) -> None:
    store = WorkflowStore(tmp_path / "nested" / "workflows.json")
    assert store.list() == []
    assert store.get("anything") is None
    assert store.delete("anything") is False


def test_workflow_roundtrip_keeps_wire_format(tmp_path: Path) -> None:
    path = tmp_path / "workflows.json"
    store = WorkflowStore(path)
    wf = Workflow.model_validate(
        workflow_json(task_step("step_1", input={"text": "${sel.text}"}, parallel=False))
    )

    saved = store.save(wf)

    assert saved.id == "wf_test"
    assert saved.updated_at >= wf.updated_at
    raw = json.loads(path.read_text(encoding="utf-8"))
    assert raw[0]["steps"][0]["taskId"] == "summarize"
    assert raw[0]["steps"][0]["parallel"] is False
    assert "websiteConfig" in raw[0]

    loaded = WorkflowStore(path).require("wf_test")
    assert loaded.steps[0].input == {"text": "${sel.text}"}
    assert loaded.name == "Test workflow"


def test_save_assigns_id_and_replaces_existing(tmp_path: Path) -> None:
    store = WorkflowStore(tmp_path / "workflows.json")

    generated = store.save(Workflow(name="No id yet"))
    assert generated.id is not None and generated.id.startswith("workflow_")

    store.save(Workflow.model_validate(workflow_json(name="First")))
    store.save(Workflow.model_validate(workflow_json(name="Second")))

    names = {wf.id: wf.name for wf in store.list()}
    assert names == {generated.id: "No id yet", "wf_test": "Second"}


def test_delete_and_require(tmp_path: Path) -> None:
    store = WorkflowStore(tmp_path / "workflows.json")
    store.save(Workflow.model_validate(workflow_json()))

    assert store.delete("wf_test") is True
    assert store.delete("wf_test") is False
    with pytest.raises(WorkflowNotFound) as excinfo:
        store.require("wf_test")
    assert str(excinfo.value) == "Workflow not found: wf_test"


@pytest.mark.parametrize("content", ["{not json", '{"a": 1}', "null"])
def test_unreadable_file_is_treated_as_empty(tmp_path: Path, content: str) -> None:
    path = tmp_path / "workflows.json"
    path.write_text(content, encoding="utf-8")
    assert WorkflowStore(path).list() == []


def test_invalid_records_are_skipped(tmp_path: Path) -> None:
    path = tmp_path / "workflows.json"
    path.write_text(
        json.dumps([workflow_json(), {"steps": "not a list"}, 7]),
        encoding="utf-8",
    )

    assert [wf.id for wf in WorkflowStore(path).list()] == ["wf_test"]


def test_knowledge_store_keeps_created_at(tmp_path: Path) -> None:
    store = KnowledgeStore(tmp_path / "knowledge.json")

    first = store.save(KnowledgeEntry(id="abc", name="Notes", content="v1", createdAt=10, updatedAt=10))
    second = store.save(KnowledgeEntry(id="abc", name="Notes", content="v2", createdAt=99, updatedAt=99))

    assert first.created_at == 10
    assert second.created_at == 10
    assert second.updated_at >= 10
    (entry,) = store.list()
    assert entry.content == "v2"


@pytest.mark.asyncio
async def test_knowledge_store_is_a_knowledge_source(tmp_path: Path) -> None:
    store = KnowledgeStore(tmp_path / "knowledge.json")
    store.save(KnowledgeEntry(id="a", name="A", tags=["x"]))
    store.save(KnowledgeEntry(id="b", name="B", type="url"))

    entries = await store.list_entries()

    assert [e.id for e in entries] == ["a", "b"]
    assert entries[0].tags == ["x"]
    assert entries[1].type == "url"


def test_concurrent_knowledge_saves_keep_created_at(tmp_path: Path) -> None:
    store = KnowledgeStore(tmp_path / "knowledge.json")
    store.save(KnowledgeEntry(id="abc", name="Notes", createdAt=10, updatedAt=10))

    def save_version(n: int) -> KnowledgeEntry:
        return store.save(
            KnowledgeEntry(id="abc", name="Notes", content=f"v{n}", createdAt=1000 + n)
        )

    with ThreadPoolExecutor(max_workers=8) as pool:
        saved = list(pool.map(save_version, range(32)))

    assert {entry.created_at for entry in saved} == {10}
    (entry,) = store.list()
    assert entry.created_at == 10


def test_store_base_is_abstract(tmp_path: Path) -> None:
    with pytest.raises(TypeError):
        _JsonListStore(tmp_path / "x.json")  # type: ignore[abstract]
