"""Configuration loader with Pydantic validation and env var expansion."""

import logging
import os
import re
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field

from ..settings import (
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_MAX_ROUNDS,
    EVENTS_URL,
    OPENROUTER_BASE_URL,
    OPENROUTER_DEFAULT_MODEL,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent / "models.yaml"
DEFAULT_PROFILE = "dev-fast"


class ModelConfig(BaseModel):
    """Configuration for a chat model backend."""

    backend: Literal["openrouter", "openai", "anthropic", "mock"] = "openrouter"
    model: str | None = None
    api_key: str | None = None
    base_url: str | None = None
    temperature: float = 0.7
    max_tokens: int | None = None
    script: list[str] = []  # Canned replies for the mock backend


class ReasoningConfig(BaseModel):
    """Configuration for the single-agent reasoning loop."""

    max_iterations: int = DEFAULT_MAX_ITERATIONS
    return_directly: list[str] = []
    system_prompt: str | None = None


class SpecialistConfig(BaseModel):
    """One specialist on the host's roster."""

    name: str
    intended_use: str
    system_prompt: str = ""
    kind: Literal["sub_agent", "bound_model"] = "sub_agent"
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    tools: list[str] = []  # Names from the tool registry, sub_agent only


def _default_specialists() -> list[SpecialistConfig]:
    return [
        SpecialistConfig(
            name="research_specialist",
            intended_use="gather facts and background information on a topic",
            system_prompt="You are a research specialist. Collect accurate, relevant facts and cite where they come from.",
        ),
        SpecialistConfig(
            name="code_specialist",
            intended_use="write, review and explain code",
            system_prompt="You are a code specialist. Produce correct, minimal code and explain it briefly.",
        ),
        SpecialistConfig(
            name="analysis_specialist",
            intended_use="compare options, reason about trade-offs and draw conclusions",
            system_prompt="You are an analysis specialist. Weigh the evidence and state clear conclusions.",
            kind="bound_model",
        ),
    ]


class OrchestratorConfig(BaseModel):
    """Configuration for the host/specialist orchestrator."""

    max_rounds: int = DEFAULT_MAX_ROUNDS
    host_system_prompt: str | None = None
    planning_prompt: str | None = None
    max_parse_retries: int = 0  # Re-prompts on malformed plan/feedback JSON
    specialists: list[SpecialistConfig] = Field(default_factory=_default_specialists)


class PublisherConfig(BaseModel):
    """Configuration for progressive event publishing."""

    url: str = ""
    timeout: float = 10.0


class ProfileConfig(BaseModel):
    """Configuration profile containing all engine settings."""

    model: ModelConfig
    reasoning: ReasoningConfig = ReasoningConfig()
    orchestrator: OrchestratorConfig = OrchestratorConfig()
    events: PublisherConfig = PublisherConfig()


class ConfigFile(BaseModel):
    """Root configuration file structure."""

    profiles: dict[str, ProfileConfig]


def expand_env_vars(value: str) -> str:
    """Expand ${VAR} references in string with environment variables.

    Unset variables are left as written.

    Args:
        value: String potentially containing env var references

    Returns:
        String with env vars expanded
    """
    if not isinstance(value, str):
        return value

    pattern = r"\$\{([^}]+)\}"

    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))

    return re.sub(pattern, replacer, value)


def expand_env_vars_recursive(data):
    """Recursively expand env vars in nested dict/list structures."""
    if isinstance(data, dict):
        return {k: expand_env_vars_recursive(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [expand_env_vars_recursive(item) for item in data]
    elif isinstance(data, str):
        return expand_env_vars(data)
    else:
        return data


def load_config_from_yaml(config_path: Path, profile_name: str) -> ProfileConfig:
    """Load configuration from YAML file.

    Args:
        config_path: Path to config YAML file
        profile_name: Name of profile to load

    Returns:
        ProfileConfig for the requested profile

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValidationError: If config is invalid
        KeyError: If profile doesn't exist
    """
    with open(config_path) as f:
        raw_data = yaml.safe_load(f)

    expanded_data = expand_env_vars_recursive(raw_data)
    config_file = ConfigFile(**expanded_data)

    if profile_name not in config_file.profiles:
        available = ", ".join(config_file.profiles.keys())
        raise KeyError(
            f"Profile '{profile_name}' not found. " f"Available profiles: {available}"
        )

    return config_file.profiles[profile_name]


def list_profiles(config_path: Path | None = None) -> list[str]:
    """Names of the profiles defined in a config file."""
    config_path = config_path or DEFAULT_CONFIG_PATH
    with open(config_path) as f:
        raw_data = yaml.safe_load(f) or {}
    return list((raw_data.get("profiles") or {}).keys())


def load_config_from_env() -> ProfileConfig:
    """Load configuration from environment variables (fallback mode).

    Returns:
        ProfileConfig using OpenRouter and default loop limits
    """
    model = ModelConfig(
        backend="openrouter",
        model=OPENROUTER_DEFAULT_MODEL,
        api_key=os.environ.get("OPENROUTER_API_KEY"),
        base_url=os.environ.get("OPENROUTER_BASE_URL", OPENROUTER_BASE_URL),
    )

    return ProfileConfig(
        model=model,
        events=PublisherConfig(url=EVENTS_URL),
    )


def load_config(
    profile: str | None = None,
    config_path: Path | None = None,
) -> ProfileConfig:
    """Load configuration from YAML file or environment variables.

    Tries the YAML config file first and falls back to environment
    variables if the file is missing or cannot be loaded.

    Args:
        profile: Profile name to load. If None, uses MODEL_PROFILE env var
                or "dev-fast" as default.
        config_path: Path to config file. If None, uses the models.yaml
                    shipped next to this module.

    Returns:
        ProfileConfig with all engine settings
    """
    if profile is None:
        profile = os.environ.get("MODEL_PROFILE", DEFAULT_PROFILE)

    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    if config_path.exists():
        try:
            return load_config_from_yaml(config_path, profile)
        except Exception as e:
            logger.warning(f"Failed to load config from {config_path}: {e}")
            logger.warning("Falling back to environment variables...")
            return load_config_from_env()
    else:
        logger.info(f"Config file {config_path} not found, using environment variables")
        return load_config_from_env()
