"""Configuration validation utilities.

Validates the gateway configuration and environment before the relay starts.
Missing optional integrations are reported, not treated as errors.
"""

import os
from typing import Any, Dict, List, Tuple
from urllib.parse import urlparse
import logging

from gateway.config import GatewayConfig, get_relay_home
from gateway.store import validate_response_cap

logger = logging.getLogger(__name__)


class ConfigValidationError(Exception):
    """Raised when configuration is invalid."""
    pass


def validate_environment() -> List[Tuple[str, bool, str]]:
    """Check required and optional settings.

    Returns:
        List of (key_name, is_set, message) tuples
    """
    results = []

    if os.environ.get("LLAMA_API_URL"):
        results.append(("LLAMA_API_URL", True, "Chat replies enabled"))
    else:
        results.append(("LLAMA_API_URL", False, "Chat replies disabled (optional)"))

    has_id = bool(os.environ.get("BATTLENET_CLIENT_ID"))
    has_secret = bool(os.environ.get("BATTLENET_CLIENT_SECRET"))
    if has_id and has_secret:
        results.append(("BATTLENET_CLIENT_ID", True, "Character tracking enabled"))
    elif has_id or has_secret:
        results.append(("BATTLENET_CLIENT_ID", False,
            "Only one of BATTLENET_CLIENT_ID / BATTLENET_CLIENT_SECRET is set"))
    else:
        results.append(("BATTLENET_CLIENT_ID", False, "Character tracking disabled (optional)"))

    return results


def validate_relay_home() -> Tuple[bool, str]:
    """Validate RELAY_HOME directory structure.

    Returns:
        (is_valid, message) tuple
    """
    relay_home = get_relay_home()

    if not relay_home.exists():
        return (True, f"{relay_home} does not exist yet (created on first run)")

    if not os.access(relay_home, os.W_OK):
        return (False, f"{relay_home} is not writable")

    config_file = relay_home / "config.yaml"
    if not config_file.exists():
        return (True, f"Valid, no config.yaml at {config_file}")
    return (True, "Valid")


def _check_url(name: str, url: str) -> None:
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigValidationError(f"{name} is not an http(s) URL: {url!r}")


def validate_gateway_config(config: GatewayConfig) -> None:
    """Raise ConfigValidationError for values the relay cannot run with."""
    if config.llm_api_url:
        _check_url("LLAMA_API_URL", config.llm_api_url)
    _check_url("BATTLENET_TOKEN_URL", config.token_url)
    if "{name}" not in config.profile_url_template:
        raise ConfigValidationError(
            "BATTLENET_PROFILE_URL_TEMPLATE must contain a {name} placeholder"
        )
    try:
        validate_response_cap(config.default_response_cap)
    except ValueError as e:
        raise ConfigValidationError(f"RESPONSE_CAP: {e}") from e
    if config.http_timeout <= 0:
        raise ConfigValidationError("RELAY_HTTP_TIMEOUT must be positive")


def run_validation(config: GatewayConfig = None) -> Dict[str, Any]:
    """Run all validation checks.

    Returns:
        Dictionary with validation results
    """
    results = {
        "environment": validate_environment(),
        "relay_home": validate_relay_home(),
        "errors": [],
        "warnings": [],
    }

    if config is not None:
        try:
            validate_gateway_config(config)
        except ConfigValidationError as e:
            results["errors"].append(str(e))

    for name, is_set, msg in results["environment"]:
        if not is_set and "Only one" in msg:
            results["warnings"].append(msg)

    home_valid, home_msg = results["relay_home"]
    if not home_valid:
        results["errors"].append(f"RELAY_HOME issue: {home_msg}")

    results["is_valid"] = len(results["errors"]) == 0

    return results


if __name__ == "__main__":
    # Allow running as standalone script
    import json
    results = run_validation()
    print(json.dumps(results, indent=2))
