"""Request-scoped access to the process-wide store, settings and preset file.

Everything hangs off `app.state`; tests swap pieces through
`app.dependency_overrides`.
"""
from __future__ import annotations

from fastapi import Depends, Request

from sheetmerge.core.config import Settings
from sheetmerge.core.merge.orchestrator import MergeOrchestrator
from sheetmerge.core.presets.store import MergePresetStore
from sheetmerge.core.store.base import TabularStore


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> TabularStore:
    return request.app.state.store


def get_orchestrator(
    store: TabularStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> MergeOrchestrator:
    return MergeOrchestrator.from_settings(store, settings)


def get_preset_store(settings: Settings = Depends(get_settings)) -> MergePresetStore:
    return MergePresetStore(workspace_dir=settings.workspace_dir, ttl_hours=settings.preset_ttl_hours)
