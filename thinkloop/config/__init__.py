"""Configuration system for model backends, loops and specialists."""

from .loader import (
    load_config,
    load_config_from_env,
    load_config_from_yaml,
    list_profiles,
    ConfigFile,
    ModelConfig,
    OrchestratorConfig,
    ProfileConfig,
    PublisherConfig,
    ReasoningConfig,
    SpecialistConfig,
)
from .factory import (
    MockChatModel,
    create_chat_model,
    create_event_publisher,
    create_from_profile,
    create_orchestrator,
    create_reasoning_loop,
    create_specialists,
)

__all__ = [
    # Loader
    "load_config",
    "load_config_from_env",
    "load_config_from_yaml",
    "list_profiles",
    "ConfigFile",
    "ModelConfig",
    "OrchestratorConfig",
    "ProfileConfig",
    "PublisherConfig",
    "ReasoningConfig",
    "SpecialistConfig",
    # Factory
    "MockChatModel",
    "create_chat_model",
    "create_event_publisher",
    "create_from_profile",
    "create_orchestrator",
    "create_reasoning_loop",
    "create_specialists",
]
