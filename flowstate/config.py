# FlowState: configuration
# Override defaults via flowstate.yaml (or FLOWSTATE_CONFIG) and env vars.

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional

import yaml

CONFIG_PATH = Path("flowstate.yaml")


class ConfigError(Exception):
    """Raised when configuration is invalid."""
    pass


@dataclass
class Config:
    """Runtime configuration for the board server."""

    # Storage
    db_path: str = "~/.local/share/flowstate/todos.db"

    # HTTP
    host: str = "127.0.0.1"
    port: int = 3000

    # Timer polling
    poll_interval_secs: float = 1.0

    # Notifications
    notifications_enabled: bool = True
    todo_timer_notifications: bool = True
    notify_webhook_url: Optional[str] = None
    notify_timeout_secs: float = 2.0

    log_level: str = "INFO"

    # Env only, never read from YAML
    api_secret: str = field(default="", repr=False)

    def resolve_paths(self):
        """Expand ~ in paths."""
        self.db_path = str(Path(self.db_path).expanduser())

    def apply_env(self):
        """Environment overrides: FLOWSTATE_DB, FLOWSTATE_API_SECRET."""
        env_db = os.environ.get("FLOWSTATE_DB")
        if env_db:
            self.db_path = env_db
        self.api_secret = os.environ.get("FLOWSTATE_API_SECRET", "").strip()

    @classmethod
    def load(cls, path: Optional[str] = None) -> "Config":
        """Load config from YAML, falling back to defaults when the file is absent."""
        env_path = os.environ.get("FLOWSTATE_CONFIG")
        cfg_path = Path(path or env_path or CONFIG_PATH)

        data = {}
        if cfg_path.exists():
            with open(cfg_path, "r") as f:
                data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise ConfigError(f"{cfg_path} must contain a YAML mapping")

        known = {f.name for f in fields(cls)} - {"api_secret"}
        cfg = cls(**{k: v for k, v in data.items() if k in known})
        cfg.apply_env()
        cfg.resolve_paths()
        return cfg
