"""
User settings and the host context handed to store commands.

Settings are stored as a JSON object in ``Asset/settings.json``::

    {"system_prompt": "...", "default_model": "gpt-4.1", "log_level": "INFO"}

Legacy camelCase keys (``systemPrompt``, ``defaultModel``, ``logLevel``)
are accepted as well.  Unknown keys are ignored.
"""

import json
import logging
import os
from dataclasses import dataclass, field

from .copilot_api import DEFAULT_MODEL, MODELS, ModelLimits
from .models import ModelOption
from .paths import asset_path

log = logging.getLogger("copilot_chat")

SETTINGS_FILE = asset_path("settings.json")

_LEGACY_KEYS = {
    "systemPrompt": "system_prompt",
    "defaultModel": "default_model",
    "logLevel": "log_level",
}


@dataclass
class Settings:
    system_prompt: str | None = None
    default_model: str = DEFAULT_MODEL
    log_level: str = "INFO"


def load_settings(path: str | None = None) -> Settings:
    """Load settings from *path*, returning defaults when the file is absent."""
    path = path or SETTINGS_FILE
    if not os.path.exists(path):
        return Settings()
    with open(path, "r", encoding="utf-8") as fh:
        raw = json.load(fh)
    if not isinstance(raw, dict):
        log.warning("[APP] Ignoring settings file %s: expected a JSON object", path)
        return Settings()

    values = {}
    for key, value in raw.items():
        key = _LEGACY_KEYS.get(key, key)
        if key in Settings.__dataclass_fields__:
            values[key] = value
    return Settings(**values)


@dataclass
class HostContext:
    """Capability handle passed to every store command.

    ``credentials`` is anything with a ``check_and_refresh_token()``
    method returning a bearer token string.
    """

    settings: Settings
    credentials: object
    model_limits: dict[str, ModelLimits] = field(default_factory=dict)

    @property
    def system_prompt(self) -> str | None:
        return self.settings.system_prompt

    def default_model_option(self) -> ModelOption:
        model_id = self.settings.default_model or DEFAULT_MODEL
        label = next(
            (name for name, mid in MODELS.items() if mid == model_id),
            model_id,
        )
        return ModelOption(value=model_id, label=label)
