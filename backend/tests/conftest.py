from __future__ import annotations

import importlib
import random
import sys
from pathlib import Path
from typing import Callable

import pytest
from fastapi.testclient import TestClient

BACKEND_DIR = Path(__file__).resolve().parents[1]
TESTS_DIR = Path(__file__).resolve().parent
for path in (BACKEND_DIR, TESTS_DIR):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

from carematch_flow_core import HookRunner, PolicyEngine, SideEffectCoordinator, ToolDispatcher
from carematch_tools import CareMatchToolset, HealthcareDirectory
from carematch_tools.health_gov import HealthGovClient
from carematch_tools.simulated import AppointmentScheduler
from carematch_tools.web_reader import WebPageReader
from storage import AuditLog, EmergencyAlertStore, NotificationStore, ScheduledJobStore, SQLiteStore

from flow_fakes import InlineExecutor


@pytest.fixture
def backend_module(tmp_path, monkeypatch):
    db_path = tmp_path / "carematch-test.sqlite"
    monkeypatch.setenv("CAREMATCH_DB_PATH", str(db_path))
    # Keep CI deterministic; provider tests script their own responses.
    monkeypatch.setenv("CAREMATCH_DISABLE_EXTERNAL_WEB", "true")
    monkeypatch.setenv("CAREMATCH_BOOKING_FAILURE_RATE", "0")
    monkeypatch.delenv("CAREMATCH_DISABLED_TOOLS", raising=False)
    monkeypatch.setenv("CAREMATCH_WORKER_TOKEN", "worker-secret")
    monkeypatch.setenv("GEMINI_API_KEY", "")
    monkeypatch.setenv("OPENROUTER_API_KEY", "")

    if "main" in sys.modules:
        module = importlib.reload(sys.modules["main"])
    else:
        module = importlib.import_module("main")
    module.container.coordinator.executor = InlineExecutor()
    return module


@pytest.fixture
def client(backend_module):
    with TestClient(backend_module.app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers() -> Callable[[str], dict[str, str]]:
    def _make(user_id: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {user_id}"}

    return _make


@pytest.fixture
def directory() -> HealthcareDirectory:
    return HealthcareDirectory()


@pytest.fixture
def toolset(directory) -> CareMatchToolset:
    return CareMatchToolset(
        directory=directory,
        scheduler=AppointmentScheduler(failure_rate=0.0, rng=random.Random(7)),
        health_gov=HealthGovClient(disable_external=True),
        web_reader=WebPageReader(disable_external=True),
    )


@pytest.fixture
def dispatcher() -> ToolDispatcher:
    return ToolDispatcher(policy=PolicyEngine(), hooks=HookRunner())


@pytest.fixture
def stores(tmp_path):
    db = SQLiteStore(str(tmp_path / "stores.sqlite"))
    return {
        "notifications": NotificationStore(db),
        "alerts": EmergencyAlertStore(db),
        "jobs": ScheduledJobStore(db),
        "audit": AuditLog(db),
    }


@pytest.fixture
def coordinator(stores) -> SideEffectCoordinator:
    return SideEffectCoordinator(executor=InlineExecutor(), **stores)
