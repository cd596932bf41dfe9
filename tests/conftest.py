import os
import sys
import tempfile
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("ENABLE_FILE_LOGS", "0")

from storage.migrate import migrate
from config.settings import settings
from config.registry import _REGISTRY
from session_lifecycle import SessionService
from template_versions import CriterionCreate, TemplateCreate, TemplateStore


@pytest.fixture(autouse=True)
def tmp_db(monkeypatch):
    td = tempfile.TemporaryDirectory()
    db_path = os.path.join(td.name, "test.db")
    monkeypatch.setattr(settings, "DB_PATH", db_path, raising=False)
    migrate(db_path)
    try:
        yield db_path
    finally:
        td.cleanup()


@pytest.fixture(autouse=True)
def clean_formulas():
    saved = dict(_REGISTRY)
    try:
        yield
    finally:
        _REGISTRY.clear()
        _REGISTRY.update(saved)


@pytest.fixture
def store(tmp_db):
    return TemplateStore(tmp_db)


@pytest.fixture
def service(tmp_db, store):
    return SessionService(tmp_db, templates=store)


@pytest.fixture
def published(store):
    """Publish a weighted template: a 1-5 scale (60) and a pass/fail gate (40, auto-fail below 50)."""

    template = store.create_template(TemplateCreate(name="Support QA", pass_threshold=70))
    scale = store.add_criterion(
        template.id,
        CriterionCreate(
            name="Empathy",
            criteria_type="scale",
            config={"min": 1, "max": 5},
            weight=60,
            sort_order=1,
        ),
    )
    gate = store.add_criterion(
        template.id,
        CriterionCreate(
            name="Verified identity",
            criteria_type="pass_fail",
            config={},
            weight=40,
            sort_order=2,
            is_auto_fail=True,
            auto_fail_threshold=50,
        ),
    )
    store.publish(template.id, change_summary="initial")
    return {"template_id": template.id, "scale_id": scale.id, "gate_id": gate.id}
