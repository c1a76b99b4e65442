"""SkillPort relay configuration loader."""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


@dataclass
class RelayConfig:
    """Startup-time configuration for the relay."""

    # Ingestion API
    api_base: str = "http://localhost:5003/api/v1"
    request_timeout: float = 10.0

    # Durable state
    state_path: str = ".skillport/state.sqlite"

    # Local bookkeeping
    history_limit: int = 100
    flag_window_minutes: float = 10.0

    # Message bridge
    host: str = "127.0.0.1"
    port: int = 8765
    cors_origins: list[str] = field(default_factory=lambda: [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5000",
        "http://127.0.0.1:5000",
    ])

    log_level: str = "INFO"

    @classmethod
    def load(cls, config_path: str = ".skillport/config.yaml") -> "RelayConfig":
        """Load config from YAML file, then apply environment overrides.

        Environment:
            SKILLPORT_API_BASE: Overrides ``api.base``
            SKILLPORT_STATE_PATH: Overrides ``state.path``

        Args:
            config_path: Path to config file (relative or absolute)

        Returns:
            Loaded configuration
        """
        path = Path(config_path)
        data: dict = {}
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

        defaults = cls()
        api_data = data.get("api", {})
        state_data = data.get("state", {})
        tracking_data = data.get("tracking", {})
        server_data = data.get("server", {})

        config = cls(
            api_base=api_data.get("base", defaults.api_base),
            request_timeout=float(api_data.get("timeout", defaults.request_timeout)),
            state_path=state_data.get("path", defaults.state_path),
            history_limit=int(tracking_data.get("history_limit", defaults.history_limit)),
            flag_window_minutes=float(
                tracking_data.get("flag_window_minutes", defaults.flag_window_minutes)
            ),
            host=server_data.get("host", defaults.host),
            port=int(server_data.get("port", defaults.port)),
            cors_origins=server_data.get("cors_origins", defaults.cors_origins),
            log_level=str(data.get("log_level", defaults.log_level)).upper(),
        )

        config.api_base = os.environ.get("SKILLPORT_API_BASE", config.api_base)
        config.state_path = os.environ.get("SKILLPORT_STATE_PATH", config.state_path)
        return config
