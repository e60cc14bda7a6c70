"""
Configuration System Tests

Tests for the YAML configuration loader and factory functions.
"""

import asyncio
import os
from pathlib import Path

import pytest

CONFIG_PATH = Path(__file__).parent / "thinkloop" / "config" / "models.yaml"


def test_load_config_from_yaml():
    """Test loading configuration from YAML file."""
    print("=" * 60)
    print("TEST 1: Load configuration from YAML")
    print("=" * 60)

    from thinkloop.config.loader import load_config_from_yaml

    profile = load_config_from_yaml(CONFIG_PATH, "dev-fast")
    print(f"\nLoaded profile: dev-fast")
    print(f"  Model backend: {profile.model.backend}")
    print(f"  Model: {profile.model.model}")
    print(f"  Max rounds: {profile.orchestrator.max_rounds}")

    assert profile.model.backend == "openrouter"
    assert profile.model.model == "openai/gpt-4o-mini"
    assert profile.orchestrator.max_parse_retries == 1
    assert [s.name for s in profile.orchestrator.specialists] == [
        "research_specialist",
        "code_specialist",
        "analysis_specialist",
    ]
    print("\n[PASS] dev-fast profile loaded correctly")

    profile = load_config_from_yaml(CONFIG_PATH, "test")
    print(f"\nLoaded profile: test")
    print(f"  Model backend: {profile.model.backend}")

    assert profile.model.backend == "mock"
    assert profile.reasoning.max_iterations == 3
    assert profile.orchestrator.specialists == []
    print("\n[PASS] test profile loaded correctly")

    with pytest.raises(KeyError):
        load_config_from_yaml(CONFIG_PATH, "does-not-exist")
    print("[PASS] Unknown profile rejected")


def test_env_var_expansion(tmp_path):
    """Test ${VAR} expansion in config values."""
    print("\n" + "=" * 60)
    print("TEST 2: Environment variable expansion")
    print("=" * 60)

    from thinkloop.config.loader import expand_env_vars, load_config_from_yaml

    os.environ["THINKLOOP_TEST_KEY"] = "sk-test-123"
    try:
        assert expand_env_vars("key=${THINKLOOP_TEST_KEY}") == "key=sk-test-123"
        assert expand_env_vars("${THINKLOOP_UNSET_VAR}") == "${THINKLOOP_UNSET_VAR}"

        config_file = tmp_path / "models.yaml"
        config_file.write_text(
            "profiles:\n"
            "  custom:\n"
            "    model:\n"
            "      backend: anthropic\n"
            "      api_key: ${THINKLOOP_TEST_KEY}\n"
            "    orchestrator:\n"
            "      max_rounds: 7\n"
        )
        profile = load_config_from_yaml(config_file, "custom")
        print(f"\n  api_key: {profile.model.api_key}")
        assert profile.model.api_key == "sk-test-123"
        assert profile.orchestrator.max_rounds == 7
        assert profile.reasoning.max_iterations == 10
    finally:
        del os.environ["THINKLOOP_TEST_KEY"]

    print("\n[PASS] Environment variables expanded")


def test_load_config_env_fallback():
    """Test loading configuration from environment variables."""
    print("\n" + "=" * 60)
    print("TEST 3: Load configuration from environment (fallback)")
    print("=" * 60)

    from thinkloop.config.loader import load_config, load_config_from_env

    profile = load_config_from_env()
    print(f"\nLoaded from environment:")
    print(f"  Model backend: {profile.model.backend}")

    assert profile.model.backend == "openrouter"
    assert profile.reasoning.max_iterations == 10
    assert profile.orchestrator.max_rounds == 5

    profile = load_config(profile="test", config_path=Path("/nonexistent/models.yaml"))
    assert profile.model.backend == "openrouter"
    print("\n[PASS] Environment fallback works correctly")


def test_load_config_main():
    """Test the main load_config function."""
    print("\n" + "=" * 60)
    print("TEST 4: Main load_config function")
    print("=" * 60)

    from thinkloop.config import load_config

    profile = load_config(profile="test")
    print(f"\nLoaded profile: test")
    print(f"  Model: {profile.model.backend}")

    assert profile.model.backend == "mock"
    print("\n[PASS] load_config with explicit profile works")

    original = os.environ.get("MODEL_PROFILE")
    os.environ["MODEL_PROFILE"] = "dev-anthropic"
    try:
        profile = load_config()
        print(f"\nLoaded from MODEL_PROFILE=dev-anthropic")
        print(f"  Model: {profile.model.backend}")
        assert profile.model.backend == "anthropic"
        print("\n[PASS] load_config with MODEL_PROFILE works")
    finally:
        if original:
            os.environ["MODEL_PROFILE"] = original
        else:
            del os.environ["MODEL_PROFILE"]


def test_factory_create_chat_model():
    """Test creating chat models from config."""
    print("\n" + "=" * 60)
    print("TEST 5: Factory - create_chat_model")
    print("=" * 60)

    from thinkloop.config import MockChatModel, ModelConfig, create_chat_model
    from thinkloop.errors import ConfigurationError

    model = create_chat_model(ModelConfig(backend="mock", script=["hello"]))
    print(f"\nCreated mock model: {type(model).__name__}")
    assert isinstance(model, MockChatModel)
    print("[PASS] Mock model created")

    with pytest.raises(ConfigurationError):
        create_chat_model(ModelConfig(backend="openrouter", api_key="${OPENROUTER_API_KEY_UNSET}"))
    print("[PASS] Unexpanded API key treated as missing")

    if os.getenv("OPENROUTER_API_KEY"):
        model = create_chat_model(ModelConfig(backend="openrouter", api_key=os.environ["OPENROUTER_API_KEY"]))
        print(f"Created OpenRouter model: {type(model).__name__}")
        print("[PASS] OpenRouter model created")
    else:
        print("[SKIP] OpenRouter model (no API key)")


def test_factory_create_specialists():
    """Test building the specialist roster from config."""
    print("\n" + "=" * 60)
    print("TEST 6: Factory - create_specialists")
    print("=" * 60)

    from thinkloop.config import MockChatModel, OrchestratorConfig, SpecialistConfig, create_specialists
    from thinkloop.errors import ConfigurationError
    from thinkloop.orchestration import BoundModelSpecialist, SubAgentSpecialist
    from thinkloop.tools import builtin_registry

    model = MockChatModel()
    config = OrchestratorConfig(
        specialists=[
            SpecialistConfig(name="math", intended_use="do arithmetic", tools=["calculate"]),
            SpecialistConfig(name="writer", intended_use="write prose", kind="bound_model"),
        ]
    )
    specialists = create_specialists(config, model, builtin_registry())
    for s in specialists:
        print(f"  {s.name}: {type(s).__name__}")

    assert isinstance(specialists[0], SubAgentSpecialist)
    assert specialists[0].agent.tools.names == ["calculate"]
    assert isinstance(specialists[1], BoundModelSpecialist)

    bad = OrchestratorConfig(
        specialists=[SpecialistConfig(name="x", intended_use="y", tools=["missing_tool"])]
    )
    with pytest.raises(ConfigurationError):
        create_specialists(bad, model, builtin_registry())

    print("\n[PASS] Specialists created from config")


def test_factory_create_from_profile():
    """Test creating all components from profile."""
    print("\n" + "=" * 60)
    print("TEST 7: Factory - create_from_profile")
    print("=" * 60)

    from thinkloop.config import load_config, create_from_profile
    from thinkloop.llm import Message

    profile = load_config(profile="test")
    model, reasoning_loop, orchestrator = create_from_profile(profile)

    print(f"\nCreated from 'test' profile:")
    print(f"  Model: {type(model).__name__}")
    print(f"  Reasoning loop: {type(reasoning_loop).__name__}")
    print(f"  Orchestrator: {type(orchestrator).__name__}")

    assert list(orchestrator.specialists) == ["general_specialist"]
    assert orchestrator.max_rounds == 2

    async def run():
        async with model:
            return await reasoning_loop.invoke([Message.user("Say something")])

    answer = asyncio.run(run())
    print(f"\nMock answer: {answer.content}")
    assert answer.content == "Mock answer"

    print("\n[PASS] create_from_profile works correctly")


def main():
    """Run all tests."""
    import tempfile

    print("\n" + "=" * 60)
    print("CONFIGURATION SYSTEM TESTS")
    print("=" * 60)

    test_load_config_from_yaml()
    with tempfile.TemporaryDirectory() as tmp:
        test_env_var_expansion(Path(tmp))
    test_load_config_env_fallback()
    test_load_config_main()
    test_factory_create_chat_model()
    test_factory_create_specialists()
    test_factory_create_from_profile()

    print("\n" + "=" * 60)
    print("ALL TESTS PASSED!")
    print("=" * 60)


if __name__ == "__main__":
    main()
