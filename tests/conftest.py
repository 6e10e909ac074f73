import copy
import os
import tempfile

# settings are read once when the app module is imported
os.environ.setdefault("SHEETMERGE_ENV", "dev")
os.environ.setdefault("SHEETMERGE_SCAN_PAGE_DELAY_SECONDS", "0")
os.environ.setdefault("SHEETMERGE_WORKSPACE_DIR", tempfile.mkdtemp(prefix="sheetmerge-tests-"))

import pytest
from fastapi.testclient import TestClient

from sheetmerge.api.deps import get_preset_store, get_store
from sheetmerge.api.main import app
from sheetmerge.core.merge.orchestrator import MergeOrchestrator
from sheetmerge.core.merge.scanner import TableScanner
from sheetmerge.core.presets.store import MergePresetStore
from sheetmerge.core.store.memory import InMemoryTabularStore


SAMPLE_DOC = {
    "tables": [
        {
            "name": "Sales East",
            "description": "east coast pipeline",
            "fields": [
                {"name": "Title", "type": "text"},
                {"name": "Status", "type": "singleSelect", "options": ["Open", "Closed"]},
                {"name": "Amount", "type": "number"},
                {"name": "Region", "type": "text"},
            ],
            "records": [
                {"Title": "Acme", "Status": "Open", "Amount": 1200, "Region": "NY"},
                {"Title": "Globex", "Status": "Closed", "Amount": 300},
            ],
        },
        {
            "name": "Sales West",
            "fields": [
                {"name": "Title", "type": "text"},
                {"name": "Status", "type": "singleSelect", "options": ["Open", "Pending"]},
                {"name": "Amount", "type": "text"},
                {"name": "Owner", "type": "text"},
            ],
            "records": [
                {"Title": "Initech", "Status": "Pending", "Amount": "n/a", "Owner": "peter"},
            ],
        },
        {
            "name": "Archive",
            "fields": [
                {"name": "Title", "type": "text"},
                {"name": "Status", "type": "singleSelect", "options": ["Open", "Closed", "Pending"]},
            ],
            "records": [],
        },
    ]
}


@pytest.fixture()
def sample_doc():
    return copy.deepcopy(SAMPLE_DOC)


@pytest.fixture()
def store(sample_doc):
    return InMemoryTabularStore.from_document(sample_doc)


@pytest.fixture()
def orchestrator(store):
    return MergeOrchestrator(store, scanner=TableScanner(store, page_delay_seconds=0))


@pytest.fixture()
def client(store, tmp_path):
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_preset_store] = lambda: MergePresetStore(workspace_dir=tmp_path / "workspace")
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
