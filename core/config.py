"""Hub configuration.

Settings come from environment variables, with a `.env` file at the repo
root loaded first when present (same convention as temporal_client.py).

Usage:
    from core.config import get_settings

    settings = get_settings()
    settings.webhook_timeout   # 30
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

from dotenv import load_dotenv

env_path = Path(__file__).resolve().parents[1] / ".env"
if env_path.exists():
    load_dotenv(env_path)


DEFAULT_DB_PATH = Path(__file__).resolve().parents[1] / "storehub.db"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def parse_connector_spec(raw: Optional[str]) -> Dict[str, str]:
    """Parse `type=module:Class,type2=module:Class` into a mapping."""
    connectors: Dict[str, str] = {}
    if not raw:
        return connectors
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        if "=" not in item:
            raise ValueError(f"HUB_CONNECTORS entry must be type=module:Class, got {item!r}")
        integration_type, target = item.split("=", 1)
        connectors[integration_type.strip()] = target.strip()
    return connectors


@dataclass
class HubSettings:
    """Runtime settings for managers, worker and API."""
    db_path: Path = DEFAULT_DB_PATH
    encryption_key: Optional[str] = None

    # Webhooks
    webhook_max_retries: int = 3
    webhook_timeout: int = 30
    webhook_connect_timeout: int = 10
    webhook_max_redirects: int = 3
    webhook_batch_size: int = 10
    poll_interval_seconds: int = 60
    claim_ttl_seconds: int = 300
    delivery_retention_days: int = 7

    # Sync jobs
    sync_timeout_seconds: int = 300
    connector_timeout_seconds: int = 60
    sync_job_retention_days: int = 14

    cache_ttl_seconds: int = 3600
    connectors: Dict[str, str] = field(default_factory=dict)

    log_level: int = logging.INFO
    log_json: bool = False

    task_queue: str = "hub-default"

    @classmethod
    def from_env(cls) -> "HubSettings":
        """Build settings from HUB_* environment variables."""
        level_name = os.getenv("HUB_LOG_LEVEL", "INFO").upper()
        level = logging.getLevelName(level_name)
        if not isinstance(level, int):
            raise ValueError(f"HUB_LOG_LEVEL is not a logging level: {level_name}")

        return cls(
            db_path=Path(os.getenv("HUB_DB_PATH", str(DEFAULT_DB_PATH))),
            encryption_key=os.getenv("HUB_ENCRYPTION_KEY") or None,
            webhook_max_retries=_env_int("HUB_WEBHOOK_MAX_RETRIES", 3),
            webhook_timeout=_env_int("HUB_WEBHOOK_TIMEOUT", 30),
            webhook_connect_timeout=_env_int("HUB_WEBHOOK_CONNECT_TIMEOUT", 10),
            webhook_max_redirects=_env_int("HUB_WEBHOOK_MAX_REDIRECTS", 3),
            webhook_batch_size=_env_int("HUB_WEBHOOK_BATCH_SIZE", 10),
            poll_interval_seconds=_env_int("HUB_POLL_INTERVAL_SECONDS", 60),
            claim_ttl_seconds=_env_int("HUB_CLAIM_TTL_SECONDS", 300),
            delivery_retention_days=_env_int("HUB_DELIVERY_RETENTION_DAYS", 7),
            sync_timeout_seconds=_env_int("HUB_SYNC_TIMEOUT_SECONDS", 300),
            connector_timeout_seconds=_env_int("HUB_CONNECTOR_TIMEOUT_SECONDS", 60),
            sync_job_retention_days=_env_int("HUB_SYNC_JOB_RETENTION_DAYS", 14),
            cache_ttl_seconds=_env_int("HUB_CACHE_TTL_SECONDS", 3600),
            connectors=parse_connector_spec(os.getenv("HUB_CONNECTORS")),
            log_level=level,
            log_json=_env_bool("HUB_LOG_JSON", False),
            task_queue=os.getenv("HUB_TASK_QUEUE", "hub-default"),
        )


_settings: Optional[HubSettings] = None


def get_settings() -> HubSettings:
    """Get process-wide settings, read from the environment once."""
    global _settings
    if _settings is None:
        _settings = HubSettings.from_env()
    return _settings


def reset_settings() -> None:
    """Forget cached settings (tests change the environment)."""
    global _settings
    _settings = None
