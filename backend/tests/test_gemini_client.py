"""Tests for the model gateway's fallback chain.

Validates that the gateway:
1. Returns the first successful answer together with the model that gave it
2. Only ever moves forward through the model list
3. Stops after every eligible model has failed
4. Announces each switch before the retry happens
5. Treats a slow model like a failed one
"""

import asyncio
from unittest.mock import MagicMock, patch

import pytest

from grid_engine import gemini_client
from grid_engine.gemini_client import (
    AiNotConfiguredError,
    AllModelsExhaustedError,
    GeminiClient,
    next_model_in_chain,
)
from grid_engine.prompts import SEARCH_TOOLS

MODELS = ["m1", "m2", "m3"]


def make_client(failing=(), slow=(), request_timeout=None):
    """GeminiClient whose single-model call is scripted per model name."""
    client = GeminiClient("test-key", request_timeout=request_timeout)
    attempts = []

    async def fake_generate_once(model_name, system_instruction, contents, config, tools):
        attempts.append((model_name, config, tools))
        if model_name in slow:
            await asyncio.sleep(1)
        if model_name in failing:
            raise RuntimeError(f"{model_name} is overloaded")
        return f"answer from {model_name}"

    client._generate_once = fake_generate_once
    return client, attempts


# =============================================================================
# next_model_in_chain
# =============================================================================

class TestNextModelInChain:
    def test_picks_the_following_model(self):
        assert next_model_in_chain("m1", MODELS, {"m1"}) == "m2"

    def test_skips_excluded_models(self):
        assert next_model_in_chain("m1", MODELS, {"m1", "m2"}) == "m3"

    def test_never_wraps_around(self):
        assert next_model_in_chain("m3", MODELS, {"m3"}) is None

    def test_unknown_model_starts_from_the_top(self):
        assert next_model_in_chain("custom", MODELS, {"custom"}) == "m1"


# =============================================================================
# generate_with_fallback
# =============================================================================

class TestGenerateWithFallback:
    def test_first_model_answers(self):
        client, attempts = make_client()
        notices = []
        result = asyncio.run(client.generate_with_fallback(
            "m1", MODELS, "system", [], lambda a, b: notices.append((a, b))
        ))
        assert result.text == "answer from m1"
        assert result.final_model == "m1"
        assert notices == []
        assert len(attempts) == 1

    def test_falls_back_to_next_model(self):
        client, _ = make_client(failing={"m1"})
        result = asyncio.run(client.generate_with_fallback("m1", MODELS, None, []))
        assert result.final_model == "m2"
        assert client.fallbacks == 1

    def test_notices_are_ordered(self):
        client, _ = make_client(failing={"m1", "m2"})
        notices = []
        result = asyncio.run(client.generate_with_fallback(
            "m1", MODELS, None, [], lambda a, b: notices.append((a, b))
        ))
        assert notices == [("m1", "m2"), ("m2", "m3")]
        assert result.final_model == "m3"

    def test_terminates_after_every_model_failed(self):
        client, attempts = make_client(failing=set(MODELS))
        with pytest.raises(AllModelsExhaustedError) as exc_info:
            asyncio.run(client.generate_with_fallback("m1", MODELS, None, []))
        assert exc_info.value.tried_models == ["m1", "m2", "m3"]
        assert len(attempts) == len(MODELS)

    def test_only_moves_forward(self):
        client, attempts = make_client(failing={"m2", "m3"})
        with pytest.raises(AllModelsExhaustedError) as exc_info:
            asyncio.run(client.generate_with_fallback("m2", MODELS, None, []))
        assert exc_info.value.tried_models == ["m2", "m3"]
        assert "m1" not in [model for model, _, _ in attempts]

    def test_start_model_outside_the_list(self):
        client, attempts = make_client(failing={"custom", "m1", "m2", "m3"})
        with pytest.raises(AllModelsExhaustedError) as exc_info:
            asyncio.run(client.generate_with_fallback("custom", MODELS, None, []))
        assert exc_info.value.tried_models == ["custom", "m1", "m2", "m3"]
        assert len(attempts) == len(MODELS) + 1

    def test_config_and_tools_reach_every_attempt(self):
        client, attempts = make_client(failing={"m1"})
        config = {"temperature": 0.0}
        tools = SEARCH_TOOLS
        asyncio.run(client.generate_with_fallback("m1", MODELS, None, [], None, config, tools))
        assert [(c, t) for _, c, t in attempts] == [(config, tools), (config, tools)]

    def test_slow_model_counts_as_failure(self):
        client, _ = make_client(slow={"m1"}, request_timeout=0.05)
        notices = []
        result = asyncio.run(client.generate_with_fallback(
            "m1", MODELS, None, [], lambda a, b: notices.append((a, b))
        ))
        assert result.final_model == "m2"
        assert notices == [("m1", "m2")]

    def test_usage_stats_track_attempts(self):
        client, _ = make_client(failing={"m1"})
        asyncio.run(client.generate_with_fallback("m1", MODELS, None, []))
        stats = client.get_usage_stats()
        assert stats["total_api_calls"] == 2
        assert stats["failed_attempts"] == 1
        assert stats["fallbacks"] == 1


# =============================================================================
# Client construction and model listing
# =============================================================================

class TestClientSetup:
    def test_missing_key_is_rejected(self):
        with pytest.raises(ValueError):
            GeminiClient("")

    def test_lists_generate_content_models_default_first(self):
        client = GeminiClient("test-key")
        listed = [
            MagicMock(name="a", supported_generation_methods=["generateContent"]),
            MagicMock(name="b", supported_generation_methods=["embedContent"]),
            MagicMock(name="c", supported_generation_methods=["generateContent", "countTokens"]),
        ]
        listed[0].name = "models/gemini-1.5-pro"
        listed[1].name = "models/text-embedding-004"
        listed[2].name = "models/gemini-2.0-flash"

        with patch.object(gemini_client.genai, "list_models", return_value=listed):
            models = client.list_available_models("gemini-2.0-flash")
        assert models == ["gemini-2.0-flash", "gemini-1.5-pro"]

    def test_listing_error_falls_back_to_default(self):
        client = GeminiClient("test-key")
        with patch.object(gemini_client.genai, "list_models", side_effect=RuntimeError("offline")):
            assert client.list_available_models("gemini-2.0-flash") == ["gemini-2.0-flash"]

    def test_module_level_call_without_client(self):
        with patch.object(gemini_client, "_client_instance", None):
            with pytest.raises(AiNotConfiguredError):
                asyncio.run(gemini_client.generate_with_fallback("m1", MODELS, None, []))
            assert gemini_client.get_usage_stats() == {"error": "Client not initialized"}
            assert gemini_client.fetch_available_models("m1") == ["m1"]
