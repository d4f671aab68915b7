"""
LLM Manager: routes prompts to the configured chat providers.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional

from .providers import AnthropicProvider, LLMProvider, OpenAIProvider, ProviderSettings, resolve_env_vars

logger = logging.getLogger(__name__)

__all__ = ["LLMManager", "parse_json_response", "resolve_env_vars"]

DEFAULT_SYSTEM_PROMPT = (
    "You assist a customer support team. Follow the requested output format exactly."
)


def parse_json_response(response: str) -> Any:
    """
    Parse a JSON object or array out of an LLM response.

    Models often wrap JSON in prose or code fences, so the first balanced-looking
    object (or array) is extracted before parsing.

    Raises:
        ValueError: If no JSON can be decoded from the response
    """
    if response is None:
        raise ValueError("Empty LLM response")

    text = response.strip()
    fenced = re.search(r"```(?:json)?\s*(.*?)```", text, re.DOTALL)
    if fenced:
        text = fenced.group(1).strip()

    for pattern in (r'\{.*\}', r'\[.*\]'):
        match = re.search(pattern, text, re.DOTALL)
        if match:
            try:
                return json.loads(match.group())
            except json.JSONDecodeError:
                continue

    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError(f"Could not parse JSON from LLM response: {e}") from e


class LLMManager:
    """Holds one provider per configured ``llm`` section and routes calls to them."""

    PROVIDERS = {
        "openai": OpenAIProvider,
        "anthropic": AnthropicProvider,
    }

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        llm_config = config.get("llm", {}) or {}
        system_prompt = llm_config.get("system_prompt", DEFAULT_SYSTEM_PROMPT)

        self.providers: Dict[str, LLMProvider] = {}
        for name, provider_class in self.PROVIDERS.items():
            section = llm_config.get(name)
            if section is None:
                continue
            settings = ProviderSettings.from_section(name, section or {}, provider_class.DEFAULT_MODEL, system_prompt)
            try:
                self.providers[name] = provider_class(settings)
                logger.info(f"{name} provider initialized ({settings.model})")
            except Exception as e:
                logger.warning(f"Failed to initialize {name} provider: {e}")

        if not self.providers:
            raise ValueError("No LLM providers could be initialized")

        self.default_provider = llm_config.get("default_provider")
        if self.default_provider not in self.providers:
            self.default_provider = next(iter(self.providers))

    def _get_provider(self, provider: Optional[str]) -> LLMProvider:
        name = provider or self.default_provider
        if name not in self.providers:
            raise ValueError(f"Provider {name} not available")
        return self.providers[name]

    async def generate(self, prompt: str, provider: Optional[str] = None, **kwargs) -> str:
        """Generate text with the named provider, or the default one."""
        return await self._get_provider(provider).generate(prompt, **kwargs)

    async def embed(self, text: str, provider: Optional[str] = None) -> List[float]:
        return await self._get_provider(provider).embed(text)

    def get_available_providers(self) -> List[str]:
        return list(self.providers.keys())

    def get_usage(self) -> Dict[str, int]:
        """Requests sent per provider since start-up."""
        return {name: p.request_count for name, p in self.providers.items()}
