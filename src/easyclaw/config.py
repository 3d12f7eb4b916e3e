"""Rules configuration loader.

Loads configuration from ~/.easyclaw/config.json, then applies
environment overrides (a .env file is loaded by the entry point).
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

EASYCLAW_HOME = Path.home() / ".easyclaw"
DEFAULT_CONFIG_PATH = EASYCLAW_HOME / "config.json"
DEFAULT_MAX_POLICY_LENGTH = 4000

LLM_PROVIDERS = ("gateway", "groq")


@dataclass
class LLMSettings:
    """Settings for the optional LLM compile strategy.

    Attributes:
        provider: "gateway", "groq", or None to use the heuristic compiler only.
        gateway_url: Base URL of the local gateway (provider "gateway").
        auth_token: Bearer token for the gateway.
        api_key: Groq API key (provider "groq").
        model: Model name; each provider has its own default.
        max_retries: Total LLM attempts before falling back.
        retry_base_delay: Seconds before the first retry, doubled each time.
        timeout: Seconds allowed for one attempt.
    """

    provider: str | None = None
    gateway_url: str | None = None
    auth_token: str | None = None
    api_key: str | None = None
    model: str | None = None
    max_retries: int = 3
    retry_base_delay: float = 1.0
    timeout: float = 60.0

    def __post_init__(self) -> None:
        """Validate settings."""
        if self.provider is not None and self.provider not in LLM_PROVIDERS:
            raise ValueError(f"Unknown LLM provider: {self.provider}")
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")


@dataclass
class RulesConfig:
    """Configuration for the rules pipeline.

    Attributes:
        skills_dir: Where action-bundle skills are materialized.
        db_path: SQLite database with rules and artifacts.
        log_dir: Directory for the JSONL event log.
        max_policy_length: Default bound of the compiled policy view.
        llm: Optional LLM strategy settings.
    """

    skills_dir: Path | None = None
    db_path: Path | None = None
    log_dir: Path | None = None
    max_policy_length: int = DEFAULT_MAX_POLICY_LENGTH
    llm: LLMSettings = field(default_factory=LLMSettings)

    def __post_init__(self) -> None:
        """Validate config and set defaults."""
        if self.skills_dir is None:
            self.skills_dir = EASYCLAW_HOME / "openclaw" / "skills"

        if self.db_path is None:
            self.db_path = EASYCLAW_HOME / "easyclaw.db"

        if self.log_dir is None:
            self.log_dir = EASYCLAW_HOME / "logs"

        if self.max_policy_length < 1:
            raise ValueError("max_policy_length must be at least 1")


def load_config(config_path: Path | None = None) -> RulesConfig:
    """Load RulesConfig from a JSON file plus environment overrides.

    The config file should have this structure:
    ```json
    {
      "rules": {
        "skills_dir": "~/.easyclaw/openclaw/skills",
        "db_path": "~/.easyclaw/easyclaw.db",
        "max_policy_length": 4000
      },
      "llm": {
        "provider": "gateway",
        "gateway_url": "http://127.0.0.1:18789",
        "max_retries": 3
      }
    }
    ```

    Args:
        config_path: Path to config file. Uses DEFAULT_CONFIG_PATH if None.

    Returns:
        RulesConfig instance with loaded values.
    """
    path = config_path or DEFAULT_CONFIG_PATH
    data: dict[str, Any] = {}

    if not path.exists():
        logger.debug("No config file at %s, using defaults", path)
    else:
        try:
            with open(path, "r") as f:
                loaded = json.load(f)
            if isinstance(loaded, dict):
                data = loaded
            else:
                logger.warning("Config in %s is not an object. Using defaults.", path)
        except json.JSONDecodeError as e:
            logger.warning("Invalid JSON in %s: %s. Using defaults.", path, e)
        except OSError as e:
            logger.warning("Cannot read %s: %s. Using defaults.", path, e)

    try:
        config = _parse_config(data)
    except ValueError as e:
        logger.warning("Invalid config in %s: %s. Using defaults.", path, e)
        config = RulesConfig()

    return apply_env_overrides(config)


def _optional_path(value: Any) -> Path | None:
    if isinstance(value, str) and value.strip():
        return Path(value).expanduser()
    return None


def _optional_str(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _parse_config(data: dict[str, Any]) -> RulesConfig:
    """Parse config dictionary into RulesConfig.

    Raises:
        ValueError: If a value is out of range.
    """
    rules_data = data.get("rules", {})
    if not isinstance(rules_data, dict):
        rules_data = {}

    llm_data = data.get("llm", {})
    if not isinstance(llm_data, dict):
        llm_data = {}

    max_policy_length = rules_data.get("max_policy_length", DEFAULT_MAX_POLICY_LENGTH)
    if not isinstance(max_policy_length, int):
        max_policy_length = DEFAULT_MAX_POLICY_LENGTH

    max_retries = llm_data.get("max_retries", 3)
    if not isinstance(max_retries, int):
        max_retries = 3

    retry_base_delay = llm_data.get("retry_base_delay", 1.0)
    if not isinstance(retry_base_delay, (int, float)) or retry_base_delay < 0:
        retry_base_delay = 1.0

    timeout = llm_data.get("timeout", 60.0)
    if not isinstance(timeout, (int, float)) or timeout <= 0:
        timeout = 60.0

    llm = LLMSettings(
        provider=_optional_str(llm_data.get("provider")),
        gateway_url=_optional_str(llm_data.get("gateway_url")),
        auth_token=_optional_str(llm_data.get("auth_token")),
        api_key=_optional_str(llm_data.get("api_key")),
        model=_optional_str(llm_data.get("model")),
        max_retries=max_retries,
        retry_base_delay=float(retry_base_delay),
        timeout=float(timeout),
    )

    return RulesConfig(
        skills_dir=_optional_path(rules_data.get("skills_dir")),
        db_path=_optional_path(rules_data.get("db_path")),
        log_dir=_optional_path(rules_data.get("log_dir")),
        max_policy_length=max_policy_length,
        llm=llm,
    )


def apply_env_overrides(config: RulesConfig) -> RulesConfig:
    """Override config values from environment variables.

    Recognized variables: EASYCLAW_SKILLS_DIR, EASYCLAW_DB_PATH,
    EASYCLAW_LLM_PROVIDER, EASYCLAW_GATEWAY_URL, EASYCLAW_GATEWAY_TOKEN,
    GROQ_API_KEY, GROQ_MODEL. Only EASYCLAW_LLM_PROVIDER, or a gateway URL
    when no provider is set, turns the LLM strategy on; a Groq key alone
    never does.
    """
    skills_dir = _optional_path(os.getenv("EASYCLAW_SKILLS_DIR"))
    if skills_dir:
        config.skills_dir = skills_dir

    db_path = _optional_path(os.getenv("EASYCLAW_DB_PATH"))
    if db_path:
        config.db_path = db_path

    llm = config.llm

    provider = _optional_str(os.getenv("EASYCLAW_LLM_PROVIDER"))
    if provider in LLM_PROVIDERS:
        llm.provider = provider
    elif provider:
        logger.warning("Ignoring unknown EASYCLAW_LLM_PROVIDER %r", provider)

    gateway_url = _optional_str(os.getenv("EASYCLAW_GATEWAY_URL"))
    if gateway_url:
        llm.gateway_url = gateway_url
        llm.provider = llm.provider or "gateway"

    auth_token = _optional_str(os.getenv("EASYCLAW_GATEWAY_TOKEN"))
    if auth_token:
        llm.auth_token = auth_token

    api_key = _optional_str(os.getenv("GROQ_API_KEY"))
    if api_key:
        llm.api_key = api_key

    groq_model = _optional_str(os.getenv("GROQ_MODEL"))
    if groq_model and llm.provider == "groq":
        llm.model = groq_model

    return config
