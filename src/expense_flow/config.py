from __future__ import annotations

from dataclasses import dataclass, field, fields
import os
from pathlib import Path
from typing import Any, Mapping

import yaml


DEFAULT_CONFIG_PATH = Path("backend/config/expense_flow.yaml")

AGENT_IDS = {
    "expense_validation_manager": "696d54bcc3a33af8ef060e65",
    "receipt_authenticator": "696d5472c3a33af8ef060e5c",
    "policy_compliance": "696d5488c3a33af8ef060e60",
    "business_rules": "696d549fc3a33af8ef060e61",
    "manager_decision": "696d54e8e1e4c42b224aff77",
}

ENV_OVERRIDES = {
    "EXPENSE_FLOW_AGENT_BASE_URL": "agent_base_url",
    "EXPENSE_FLOW_API_KEY": "api_key",
    "EXPENSE_FLOW_DB_PATH": "db_path",
    "EXPENSE_FLOW_LOG_LEVEL": "log_level",
}


@dataclass
class Settings:
    agent_base_url: str = "http://localhost:8080/api"
    api_key: str = ""
    agent_ids: dict[str, str] = field(default_factory=lambda: dict(AGENT_IDS))
    db_path: str = "expense_flow.sqlite3"
    storage_key: str = "expenses"
    employee_name: str = "John Doe"
    employee_id: str = "EMP-12345"
    employee_location: str = "Zurich office"
    max_upload_bytes: int = 10 * 1024 * 1024
    log_level: str = "INFO"

    @property
    def validation_agent_id(self) -> str:
        return self.agent_ids["expense_validation_manager"]

    @property
    def decision_agent_id(self) -> str:
        return self.agent_ids["manager_decision"]

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "Settings":
        known = {f.name for f in fields(cls)}
        unknown = set(values) - known
        if unknown:
            raise ValueError(f"Unknown settings: {sorted(unknown)}")
        settings = cls(**{k: v for k, v in values.items() if k != "agent_ids"})
        settings.agent_ids.update(values.get("agent_ids") or {})
        return settings


def load_settings(path: Path | str | None = None, environ: Mapping[str, str] | None = None) -> Settings:
    """Read settings from YAML (when present) and apply environment overrides."""
    config_path = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    values: dict[str, Any] = {}
    if config_path.exists():
        with config_path.open("r", encoding="utf-8") as config_file:
            loaded = yaml.safe_load(config_file) or {}
        if not isinstance(loaded, dict):
            msg = f"Settings file must contain a dictionary at root: {config_path}"
            raise ValueError(msg)
        values.update(loaded)
    elif path is not None:
        raise FileNotFoundError(config_path)

    environ = os.environ if environ is None else environ
    for env_name, setting in ENV_OVERRIDES.items():
        if environ.get(env_name):
            values[setting] = environ[env_name]
    return Settings.from_mapping(values)
