"""Mutable admin settings (retention window, default speed preset)."""

from __future__ import annotations

import logging
from typing import Any, Dict

from convertflix.core.exceptions import InvalidRequestError
from convertflix.engine.presets import normalize_preset
from convertflix.storage.store import JsonStore

logger = logging.getLogger(__name__)

SETTINGS_OBJECT = "settings"
MAX_AUTO_DELETE_DAYS = 365


class SettingsStore:
    def __init__(self, store: JsonStore, default_retention_days: int = 7, default_preset: str = "fast") -> None:
        self.store = store
        self.defaults: Dict[str, Any] = {
            "autoDeleteDays": int(default_retention_days),
            "defaultSpeedPreset": default_preset,
        }

    def get(self) -> Dict[str, Any]:
        saved = self.store.read(SETTINGS_OBJECT, {})
        merged = dict(self.defaults)
        if isinstance(saved, dict):
            merged.update(saved)
        return merged

    def auto_delete_days(self) -> int:
        try:
            days = int(self.get().get("autoDeleteDays"))
        except (TypeError, ValueError):
            return self.defaults["autoDeleteDays"]
        return days if days > 0 else self.defaults["autoDeleteDays"]

    def default_preset(self) -> str:
        return normalize_preset(self.get().get("defaultSpeedPreset")) or self.defaults["defaultSpeedPreset"]

    def update(self, changes: Dict[str, Any]) -> Dict[str, Any]:
        """Validate and persist the known keys of `changes`.

        Raises:
            InvalidRequestError: a value is out of range or not a preset.
        """
        clean: Dict[str, Any] = {}
        if "autoDeleteDays" in changes:
            try:
                days = int(changes["autoDeleteDays"])
            except (TypeError, ValueError):
                raise InvalidRequestError("autoDeleteDays must be a whole number of days")
            if not 1 <= days <= MAX_AUTO_DELETE_DAYS:
                raise InvalidRequestError(f"autoDeleteDays must be between 1 and {MAX_AUTO_DELETE_DAYS}")
            clean["autoDeleteDays"] = days
        if "defaultSpeedPreset" in changes:
            preset = normalize_preset(changes["defaultSpeedPreset"])
            if preset is None:
                raise InvalidRequestError("defaultSpeedPreset must be one of turbo, fast, balanced, quality")
            clean["defaultSpeedPreset"] = preset

        def _apply(saved: Dict[str, Any]) -> None:
            saved.update(clean)

        self.store.update(SETTINGS_OBJECT, {}, _apply)
        if clean:
            logger.info("[settings] Updated %s", clean)
        return self.get()
