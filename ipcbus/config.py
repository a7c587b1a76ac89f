"""Runtime configuration — env-driven.

Centralized settings using pydantic-settings.  Reads from a ``.env`` file
and ``IPCBUS_*`` environment variables.
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class BusConfig(BaseSettings):
    """Broker and client configuration with environment variable overrides.

    Examples
    --------
    Override via environment::

        export IPCBUS_LOG_LEVEL=DEBUG
        export IPCBUS_REQUEST_TIMEOUT_MS=3000
        export IPCBUS_POLICY_PATH=/etc/ipcbus/policy.json
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="IPCBUS_",
        env_file_encoding="utf-8",
    )

    # Runtime environment
    environment: str = "development"
    log_level: str = "INFO"
    debug: bool = False

    # Broker identity; envelopes targeted here stay broker-internal
    identity: str = "main"

    # Request/response correlation
    request_timeout_ms: int = 8000
    max_pending_requests: int = 1000
    sweep_interval_ms: int = 5000

    # Routing policy document (JSON); None means the built-in default
    policy_path: Path | None = None

    # Audit
    audit_enabled: bool = True
    audit_log_dir: Path = Path("logs")
    audit_domains: list[str] = ["crm", "risk", "ticket"]

    # Broker-side sample services
    reply_delay_ms: int = 300

    @property
    def is_production(self) -> bool:
        """Whether running in production mode."""
        return self.environment == "production"


# Module-level singleton: import as `from ipcbus.config import config`
config = BusConfig()
