"""
Gateway configuration.

Settings come from environment variables, loaded in this order:
  1. ~/.relay/.env   (RELAY_HOME overrides the directory)
  2. ./.env          (project fallback, never overrides step 1)
  3. ~/.relay/config.yaml top-level scalars, bridged into the environment
     only for keys that are not already set

Optional integrations are disabled, not fatal, when their settings are
missing: no LLAMA_API_URL means no chat replies, no Battle.net client
credentials means no character tracking.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv

from relay_constants import (
    BATTLENET_PROFILE_URL_TEMPLATE,
    BATTLENET_TOKEN_URL,
    DEFAULT_REALM_TITLE,
    RESPONSE_CAP_DEFAULT,
)

logger = logging.getLogger(__name__)


def get_relay_home() -> Path:
    """Resolve the relay home directory (respects RELAY_HOME override)."""
    return Path(os.getenv("RELAY_HOME", Path.home() / ".relay"))


@dataclass
class GatewayConfig:
    """Everything the bootstrap layer passes into the core."""

    llm_api_url: Optional[str] = None
    battlenet_client_id: Optional[str] = None
    battlenet_client_secret: Optional[str] = None
    token_url: str = BATTLENET_TOKEN_URL
    profile_url_template: str = BATTLENET_PROFILE_URL_TEMPLATE
    realm_title: str = DEFAULT_REALM_TITLE
    database_path: Optional[Path] = None
    http_timeout: float = 30.0
    default_response_cap: int = RESPONSE_CAP_DEFAULT
    log_level: str = "INFO"

    @property
    def llm_enabled(self) -> bool:
        return bool(self.llm_api_url)

    @property
    def battlenet_enabled(self) -> bool:
        return bool(self.battlenet_client_id and self.battlenet_client_secret)

    def resolved_database_path(self) -> Path:
        return Path(self.database_path) if self.database_path else get_relay_home() / "relay.db"


def load_environment(relay_home: Optional[Path] = None) -> None:
    """Load .env files and bridge config.yaml scalars into os.environ."""
    home = relay_home or get_relay_home()

    env_path = home / ".env"
    if env_path.exists():
        try:
            load_dotenv(env_path, encoding="utf-8")
        except UnicodeDecodeError:
            load_dotenv(env_path, encoding="latin-1")
    load_dotenv()

    config_path = home / "config.yaml"
    if not config_path.exists():
        return
    try:
        with open(config_path, encoding="utf-8") as f:
            cfg = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Ignoring unreadable %s: %s", config_path, e)
        return
    if not isinstance(cfg, dict):
        logger.warning("Ignoring %s: top level must be a mapping", config_path)
        return
    for key, val in cfg.items():
        if isinstance(val, (str, int, float, bool)) and key not in os.environ:
            os.environ[key] = str(val)


def _env(name: str) -> Optional[str]:
    value = os.getenv(name, "").strip()
    return value or None


def _apply_env_overrides(config: GatewayConfig) -> None:
    """Overlay environment variables onto ``config`` in place."""
    config.llm_api_url = _env("LLAMA_API_URL") or config.llm_api_url
    config.battlenet_client_id = _env("BATTLENET_CLIENT_ID") or config.battlenet_client_id
    config.battlenet_client_secret = (
        _env("BATTLENET_CLIENT_SECRET") or config.battlenet_client_secret
    )
    config.token_url = _env("BATTLENET_TOKEN_URL") or config.token_url
    config.profile_url_template = (
        _env("BATTLENET_PROFILE_URL_TEMPLATE") or config.profile_url_template
    )
    config.realm_title = _env("RELAY_REALM_TITLE") or config.realm_title
    config.log_level = (_env("RELAY_LOG_LEVEL") or config.log_level).upper()

    db_path = _env("DATABASE_PATH")
    if db_path:
        config.database_path = Path(db_path).expanduser()

    timeout = _env("RELAY_HTTP_TIMEOUT")
    if timeout:
        try:
            config.http_timeout = float(timeout)
        except ValueError:
            logger.warning("Invalid RELAY_HTTP_TIMEOUT '%s', using %.0fs", timeout, config.http_timeout)

    cap = _env("RESPONSE_CAP")
    if cap:
        try:
            config.default_response_cap = int(cap)
        except ValueError:
            logger.warning("Invalid RESPONSE_CAP '%s', using %d", cap, config.default_response_cap)


def load_gateway_config(load_env_files: bool = True) -> GatewayConfig:
    """Build a GatewayConfig from the environment."""
    if load_env_files:
        load_environment()
    config = GatewayConfig()
    _apply_env_overrides(config)
    return config


def log_feature_status(config: GatewayConfig) -> None:
    """Log which optional integrations are enabled."""
    if config.llm_enabled:
        logger.info("LLAMA_API_URL configured: %s", config.llm_api_url)
    else:
        logger.warning("LLAMA_API_URL not set - LLM features disabled")

    if config.battlenet_enabled:
        logger.info("Battle.net API configured")
    else:
        logger.warning("BATTLENET_CLIENT_ID/SECRET not set - WoW features disabled")
