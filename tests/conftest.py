from __future__ import annotations

from pathlib import Path

import pytest
from fakes import FakeEngine

import huornvm.models as models
import huornvm.vm.builder as builder_module


@pytest.hookimpl(trylast=True)
def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    del config
    for item in items:
        path = Path(str(getattr(item, "path", item.fspath)))
        if "integration" in path.parts:
            item.add_marker(pytest.mark.integration)
            item.add_marker(pytest.mark.slow)


@pytest.fixture
def eight_core_host(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(models, "host_cpu_count", lambda: 8)
    monkeypatch.setattr(builder_module, "host_cpu_count", lambda: 8)


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()
