"""Settings for the agent, its provider and its tools."""

import json
import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

ENV_PREFIX = "TOOL_CHAT_"

PROVIDER_BASE_URLS = {
    "openai": "https://api.openai.com/v1",
    "openrouter": "https://openrouter.ai/api/v1",
    "groq": "https://api.groq.com/openai/v1",
    "ollama": "http://localhost:11434/v1",
}
CUSTOM_FALLBACK_URL = "https://example.com/v1"

# Conventional variable names honoured when the prefixed one is unset
ENV_FALLBACKS = {
    "api_key": "OPENAI_API_KEY",
    "google_key": "GOOGLE_SEARCH_API_KEY",
    "google_cx": "GOOGLE_SEARCH_ENGINE_ID",
}


def default_settings_path() -> Path:
    override = os.getenv(ENV_PREFIX + "SETTINGS")
    if override:
        return Path(override).expanduser()
    xdg_config = os.getenv("XDG_CONFIG_HOME", os.path.expanduser("~/.config"))
    return Path(xdg_config) / "tool_chat" / "settings.json"


@dataclass
class Settings:
    provider: str = "openai"
    model: str = "gpt-4o-mini"
    api_key: str = ""
    custom_base_url: str = ""
    google_key: str = ""
    google_cx: str = ""
    aipipe_url: str = ""
    aipipe_token: str = ""
    max_rounds: int = 25
    exec_timeout: float = 30.0
    request_timeout: float = 120.0
    max_retries: int = 2

    @property
    def base_url(self) -> str:
        if self.provider == "custom":
            return self.custom_base_url.strip() or CUSTOM_FALLBACK_URL
        return PROVIDER_BASE_URLS.get(self.provider, PROVIDER_BASE_URLS["openai"])

    def update(self, values: Dict[str, Any]) -> "Settings":
        """Apply known keys from ``values``, coercing to the field's type."""
        known = {f.name: f for f in fields(self)}
        for key, value in values.items():
            if key not in known or value is None or value == "":
                continue
            current = getattr(self, key)
            try:
                setattr(self, key, type(current)(value))
            except (TypeError, ValueError):
                logger.warning(f"Ignoring invalid setting {key}={value!r}")
        return self

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        settings = cls()
        values = {}
        for f in fields(cls):
            value = os.getenv(ENV_PREFIX + f.name.upper())
            if value is None and f.name in ENV_FALLBACKS:
                value = os.getenv(ENV_FALLBACKS[f.name])
            values[f.name] = value
        return settings.update(values)


def load_settings(path: Optional[Path] = None) -> Settings:
    """Environment first, then the JSON settings file on top."""
    settings = Settings.from_env()
    path = path or default_settings_path()
    if path.exists():
        try:
            on_disk = json.loads(path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not read settings from {path}: {e}")
        else:
            if isinstance(on_disk, dict):
                settings.update(on_disk)
    return settings


def save_settings(settings: Settings, path: Optional[Path] = None) -> Path:
    path = path or default_settings_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(settings.to_dict(), indent=2) + "\n")
    return path
