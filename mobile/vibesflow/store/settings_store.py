"""User settings for the storage backend and creator identity."""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import List, Optional

REQUIRED = ("server_url", "api_key", "creator_id")

# Environment variables win over the file so CI and headless runs need no config step.
ENV_OVERRIDES = {
    "server_url": "VIBESFLOW_SERVER_URL",
    "api_key": "VIBESFLOW_API_KEY",
    "creator_id": "VIBESFLOW_CREATOR_ID",
}


@dataclass(slots=True)
class AppSettings:
    server_url: str = ""
    api_key: str = ""
    creator_id: str = ""
    participant_count: int = 1

    def missing(self) -> List[str]:
        return [name for name in REQUIRED if not getattr(self, name)]


class SettingsStore:
    """JSON file of :class:`AppSettings`, rewritten on every update."""

    def __init__(self, path: Path, *, use_env: bool = True) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.use_env = use_env
        self._settings = self._load()

    @classmethod
    def in_dir(cls, data_dir: str, filename: str = "settings.json") -> "SettingsStore":
        return cls(Path(data_dir).expanduser() / filename)

    def _load(self) -> AppSettings:
        settings = AppSettings()
        raw: dict = {}
        if self.path.exists():
            try:
                raw = json.loads(self.path.read_text(encoding="utf-8"))
            except (OSError, ValueError):
                raw = {}
        for item in fields(AppSettings):
            if item.name in raw:
                self._assign(settings, item.name, raw[item.name])
        if self.use_env:
            for name, env_name in ENV_OVERRIDES.items():
                value = os.getenv(env_name)
                if value:
                    setattr(settings, name, value)
        settings.participant_count = max(1, settings.participant_count)
        return settings

    @staticmethod
    def _assign(settings: AppSettings, key: str, value: Optional[object]) -> None:
        if isinstance(getattr(settings, key), int):
            setattr(settings, key, int(value or 0))
        else:
            setattr(settings, key, str(value or ""))

    def get(self) -> AppSettings:
        return self._settings

    def update(self, **kwargs) -> AppSettings:
        for key, value in kwargs.items():
            if hasattr(self._settings, key):
                self._assign(self._settings, key, value)
        self._persist()
        return self._settings

    def _persist(self) -> None:
        self.path.write_text(json.dumps(asdict(self._settings), indent=2), encoding="utf-8")


__all__ = ["AppSettings", "SettingsStore"]
