"""Import smoke tests for package modules."""

from importlib import import_module

import xui_harvester

MODULES = [
    "xui_harvester.config",
    "xui_harvester.models",
    "xui_harvester.errors",
    "xui_harvester.logging",
    "xui_harvester.browser.session",
    "xui_harvester.collectors.base",
    "xui_harvester.collectors.context",
    "xui_harvester.collectors.page",
    "xui_harvester.extract.normalize",
    "xui_harvester.reconstruct.threads",
    "xui_harvester.store.base",
    "xui_harvester.store.checkpoints",
    "xui_harvester.store.memory",
    "xui_harvester.store.records",
    "xui_harvester.store.sqlite",
    "xui_harvester.render.base",
    "xui_harvester.render.jsonout",
    "xui_harvester.render.plain",
    "xui_harvester.render.pretty",
    "xui_harvester.scheduler.deferral",
    "xui_harvester.scheduler.engine",
    "xui_harvester.scheduler.orchestrator",
    "xui_harvester.scheduler.search",
    "xui_harvester.scheduler.stall",
    "xui_harvester.scheduler.timing",
    "xui_harvester.diagnostics.events",
    "xui_harvester.testing",
    "xui_harvester.testing.fake_page",
    "xui_harvester.testing.time_control",
]


def test_core_modules_import_cleanly() -> None:
    for module in MODULES:
        assert import_module(module) is not None


def test_package_exposes_version() -> None:
    assert xui_harvester.__version__ == "0.1.0"
