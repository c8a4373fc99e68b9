"""Shared shipspec configuration utilities.

Centralises reading of ~/.shipspec/configuration.json so that the workflows,
the executor and the tools agree on model settings, token budgets and
worker limits. Environment variables prefixed with ``SHIPSPEC_`` override
values from the file.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

SHIPSPEC_HOME = Path.home() / ".shipspec"
SHIPSPEC_CONFIG_FILE = SHIPSPEC_HOME / "configuration.json"

DEFAULT_MODEL = "openai/gpt-4-turbo"
DEFAULT_MAX_TOKENS = 4096
DEFAULT_MAX_CONTEXT_TOKENS = 16000
DEFAULT_RESERVED_OUTPUT_TOKENS = 4000


def get_shipspec_config() -> dict[str, Any]:
    """Load configuration from ~/.shipspec/configuration.json."""
    if not SHIPSPEC_CONFIG_FILE.exists():
        return {}
    try:
        with open(SHIPSPEC_CONFIG_FILE, encoding="utf-8-sig") as f:
            return json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(f"Ignoring unreadable config file {SHIPSPEC_CONFIG_FILE}: {e}")
        return {}


def _env(name: str) -> str | None:
    return os.environ.get(f"SHIPSPEC_{name}")


def _env_int(name: str, default: int) -> int:
    raw = _env(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"SHIPSPEC_{name}={raw!r} is not an integer, using {default}")
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = _env(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def get_preferred_model() -> str:
    """Return the model string in litellm form (e.g. 'openai/gpt-4-turbo')."""
    override = _env("MODEL")
    if override:
        return override
    llm = get_shipspec_config().get("llm", {})
    if llm.get("provider") and llm.get("model"):
        return f"{llm['provider']}/{llm['model']}"
    return DEFAULT_MODEL


def get_max_tokens() -> int:
    """Return the configured max_tokens, falling back to DEFAULT_MAX_TOKENS."""
    return get_shipspec_config().get("llm", {}).get("max_tokens", DEFAULT_MAX_TOKENS)


def get_api_key() -> str | None:
    """Return the API key from the environment variable named in configuration."""
    llm = get_shipspec_config().get("llm", {})
    api_key_env_var = llm.get("api_key_env_var")
    if api_key_env_var:
        return os.environ.get(api_key_env_var)
    return None


def get_api_base() -> str | None:
    return get_shipspec_config().get("llm", {}).get("api_base")


def get_max_context_tokens() -> int:
    default = get_shipspec_config().get("llm", {}).get(
        "max_context_tokens", DEFAULT_MAX_CONTEXT_TOKENS
    )
    return _env_int("MAX_CONTEXT_TOKENS", default)


def get_reserved_output_tokens() -> int:
    default = get_shipspec_config().get("llm", {}).get(
        "reserved_output_tokens", DEFAULT_RESERVED_OUTPUT_TOKENS
    )
    return _env_int("RESERVED_OUTPUT_TOKENS", default)


def get_checkpoint_dir() -> Path:
    """Directory for durable thread checkpoints."""
    override = _env("CHECKPOINT_DIR")
    if override:
        return Path(override).expanduser()
    configured = get_shipspec_config().get("checkpoint_dir")
    if configured:
        return Path(configured).expanduser()
    return SHIPSPEC_HOME / "checkpoints"


def _productionalize_config() -> dict[str, Any]:
    return get_shipspec_config().get("productionalize", {})


def get_worker_concurrency() -> int:
    return _env_int("WORKER_CONCURRENCY", _productionalize_config().get("worker_concurrency", 4))


def get_worker_timeout_seconds() -> int:
    return _env_int(
        "WORKER_TIMEOUT_SECONDS", _productionalize_config().get("worker_timeout_seconds", 120)
    )


def get_sast_tools() -> list[str]:
    raw = _env("SAST_TOOLS")
    if raw is not None:
        return [t.strip() for t in raw.split(",") if t.strip()]
    return list(_productionalize_config().get("sast", {}).get("tools", []))


def get_web_search_provider() -> str:
    return _env("WEB_SEARCH_PROVIDER") or _productionalize_config().get("web_search", {}).get(
        "provider", "auto"
    )


def get_interactive_mode() -> bool:
    return _env_bool("INTERACTIVE", _productionalize_config().get("interactive", True))


# ---------------------------------------------------------------------------
# RuntimeConfig – shared across workflows
# ---------------------------------------------------------------------------


@dataclass
class RuntimeConfig:
    """Workflow runtime configuration loaded from ~/.shipspec/configuration.json."""

    model: str = field(default_factory=get_preferred_model)
    temperature: float = 0.0
    max_tokens: int = field(default_factory=get_max_tokens)
    api_key: str | None = field(default_factory=get_api_key)
    api_base: str | None = field(default_factory=get_api_base)

    # Token budget for retrieved context handed to generation steps
    max_context_tokens: int = field(default_factory=get_max_context_tokens)
    reserved_output_tokens: int = field(default_factory=get_reserved_output_tokens)

    checkpoint_dir: Path = field(default_factory=get_checkpoint_dir)

    # Fan-out limits
    worker_concurrency: int = field(default_factory=get_worker_concurrency)
    worker_timeout_seconds: int = field(default_factory=get_worker_timeout_seconds)
    max_evidence_chars: int = 40_000

    # Evidence collaborators
    web_search_provider: str = field(default_factory=get_web_search_provider)
    sast_tools: list[str] = field(default_factory=get_sast_tools)
    sast_timeout_seconds: int = 300
    sast_max_output_mb: int = 10

    interactive_mode: bool = field(default_factory=get_interactive_mode)
