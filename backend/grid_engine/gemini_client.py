"""
Gemini API Client Module

This module provides the single gateway through which every feature talks to the
Google Gemini API. A request names a starting model and an ordered list of
models; when a model fails the gateway moves forward through the list until one
answers or the list is exhausted.
"""

import asyncio
import logging
from typing import Optional, Dict, Any, List, Callable, Set

try:
    import google.generativeai as genai
except ImportError:
    print("ERROR: Please install: pip install google-generativeai")
    raise

from .config import DEFAULT_MODEL
from .data_structures import GenerationResult

logger = logging.getLogger(__name__)

RetryCallback = Callable[[str, str], None]


class GatewayError(Exception):
    """Base class for failures surfaced by the gateway"""


class AllModelsExhaustedError(GatewayError):
    """Every eligible model in the fallback chain failed"""

    def __init__(self, tried_models: List[str]):
        self.tried_models = list(tried_models)
        super().__init__(f"All available models failed (tried: {', '.join(self.tried_models)})")


class AiNotConfiguredError(GatewayError):
    """No API key was configured, so no client exists"""

    def __init__(self):
        super().__init__("AI is not configured. Please check your .env file.")


def next_model_in_chain(current: str, available_models: List[str], excluded: Set[str]) -> Optional[str]:
    """Pick the first model strictly after ``current`` that has not failed yet

    The search never wraps around, which bounds a fallback chain by the length
    of ``available_models``.
    """
    idx = available_models.index(current) if current in available_models else -1
    for candidate in available_models[idx + 1:]:
        if candidate not in excluded:
            return candidate
    return None


class GeminiClient:
    """Centralized Gemini API client with model fallback"""

    def __init__(self, api_key: str, request_timeout: Optional[float] = 120.0):
        """Initialize the Gemini client

        Args:
            api_key: Google Gemini API key
            request_timeout: Seconds allowed for a single model attempt; None disables it
        """
        if not api_key:
            raise ValueError("Gemini API key is required")

        genai.configure(api_key=api_key)
        self.request_timeout = request_timeout

        # Track API usage
        self.api_calls = 0
        self.failed_attempts = 0
        self.fallbacks = 0

        logger.info(f"🤖 Gemini Client initialized (per-attempt timeout: {request_timeout}s)")

    async def _generate_once(self, model_name: str, system_instruction: Optional[str],
                             contents: List[Dict[str, Any]], config: Optional[Dict[str, Any]],
                             tools: Optional[List[Any]]) -> str:
        """Issue one generateContent request against a single model"""
        model = genai.GenerativeModel(
            model_name,
            system_instruction=system_instruction or None,
            generation_config=config or None,
            tools=tools or None,
        )
        response = await model.generate_content_async(contents)

        if not response.candidates:
            raise ValueError("No candidates in Gemini response")

        # response.text raises if the candidate carries no text parts
        return response.text or ""

    async def generate_with_fallback(self, start_model: str, available_models: List[str],
                                     system_instruction: Optional[str], contents: List[Dict[str, Any]],
                                     on_retry: Optional[RetryCallback] = None,
                                     config: Optional[Dict[str, Any]] = None,
                                     tools: Optional[List[Any]] = None) -> GenerationResult:
        """Generate content, walking forward through the model list on failure

        Args:
            start_model: Model tried first
            available_models: Ordered fallback chain
            system_instruction: System prompt, identical for every attempt
            contents: Conversation contents ({"role", "parts"} dicts)
            on_retry: Called with (failed_model, next_model) before each retry
            config: Generation config passed verbatim to every attempt
            tools: Tool declarations passed verbatim to every attempt

        Returns:
            GenerationResult with the text and the model that produced it

        Raises:
            AllModelsExhaustedError: when no eligible model is left
        """
        excluded: Set[str] = set()
        tried: List[str] = []
        model_name = start_model

        while True:
            tried.append(model_name)
            try:
                self.api_calls += 1
                logger.debug(f"📤 Making Gemini API call #{self.api_calls} with {model_name}")
                attempt = self._generate_once(model_name, system_instruction, contents, config, tools)
                if self.request_timeout:
                    text = await asyncio.wait_for(attempt, timeout=self.request_timeout)
                else:
                    text = await attempt
                logger.debug(f"✅ Gemini API call successful ({model_name})")
                return GenerationResult(text=text, final_model=model_name)

            except Exception as e:
                self.failed_attempts += 1
                logger.warning(f"🔄 Model {model_name} failed: {e!r}")
                excluded.add(model_name)
                next_model = next_model_in_chain(model_name, available_models, excluded)

                if next_model is None:
                    logger.error(f"❌ All models failed after {len(tried)} attempts: {tried}")
                    raise AllModelsExhaustedError(tried) from e

                self.fallbacks += 1
                if on_retry:
                    on_retry(model_name, next_model)
                model_name = next_model

    def list_available_models(self, default_model: str = DEFAULT_MODEL) -> List[str]:
        """List models that support generateContent, default model first"""
        try:
            models = [
                m.name.replace("models/", "")
                for m in genai.list_models()
                if "generateContent" in (m.supported_generation_methods or [])
            ]
        except Exception as e:
            logger.error(f"❌ Error listing models: {e}")
            return [default_model]

        if not models:
            return [default_model]
        # Stable sort keeps the API order for everything but the default
        return sorted(models, key=lambda name: 0 if name == default_model else 1)

    def get_usage_stats(self) -> Dict[str, Any]:
        """Get API usage statistics

        Returns:
            Dictionary with usage stats
        """
        return {
            "total_api_calls": self.api_calls,
            "failed_attempts": self.failed_attempts,
            "fallbacks": self.fallbacks,
            "request_timeout": self.request_timeout,
        }


# Global client instance (will be initialized when needed)
_client_instance: Optional[GeminiClient] = None


def initialize_client(api_key: str, request_timeout: Optional[float] = 120.0) -> GeminiClient:
    """Initialize the global Gemini client instance

    Args:
        api_key: Google Gemini API key
        request_timeout: Seconds allowed for a single model attempt

    Returns:
        Initialized GeminiClient instance
    """
    global _client_instance
    _client_instance = GeminiClient(api_key, request_timeout)
    logger.info("🤖 Global Gemini client initialized")
    return _client_instance


def get_client() -> Optional[GeminiClient]:
    """Get the global Gemini client instance

    Returns:
        GeminiClient instance or None if not initialized
    """
    if _client_instance is None:
        logger.warning("⚠️ Gemini client not initialized. Call initialize_client() first.")
    return _client_instance


def is_ai_enabled() -> bool:
    return _client_instance is not None


async def generate_with_fallback(start_model: str, available_models: List[str],
                                 system_instruction: Optional[str], contents: List[Dict[str, Any]],
                                 on_retry: Optional[RetryCallback] = None,
                                 config: Optional[Dict[str, Any]] = None,
                                 tools: Optional[List[Any]] = None) -> GenerationResult:
    """Convenience function to generate content using the global client"""
    client = get_client()
    if client is None:
        raise AiNotConfiguredError()
    return await client.generate_with_fallback(
        start_model, available_models, system_instruction, contents, on_retry, config, tools
    )


def fetch_available_models(default_model: str = DEFAULT_MODEL) -> List[str]:
    """List usable models with the global client, or just the default without one"""
    client = get_client()
    if client is None:
        return [default_model]
    return client.list_available_models(default_model)


def get_usage_stats() -> Dict[str, Any]:
    """Get usage statistics from the global client

    Returns:
        Dictionary with usage stats or an error entry if client not initialized
    """
    client = get_client()
    if client is None:
        return {"error": "Client not initialized"}

    return client.get_usage_stats()
