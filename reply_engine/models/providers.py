"""
Chat and embedding providers backed by the OpenAI and Anthropic SDKs.
"""

import logging
import os
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


def resolve_env_vars(value: str) -> str:
    """Replace ``${VAR_NAME}`` placeholders with environment values, leaving unknown ones as-is."""
    if not isinstance(value, str) or "${" not in value:
        return value
    return re.sub(r"\$\{([^}]+)\}", lambda m: os.getenv(m.group(1), m.group(0)), value)


@dataclass
class ProviderSettings:
    """Settings for one provider section of the ``llm`` config."""
    name: str
    model: str
    temperature: float = 0.1
    max_tokens: int = 2000
    api_key: Optional[str] = None
    embedding_model: Optional[str] = None
    system_prompt: Optional[str] = None

    @classmethod
    def from_section(cls, name: str, section: Dict[str, Any], default_model: str,
                     system_prompt: Optional[str] = None) -> "ProviderSettings":
        api_key = section.get("api_key")
        return cls(
            name=name,
            model=section.get("model", default_model),
            temperature=float(section.get("temperature", 0.1)),
            max_tokens=int(section.get("max_tokens", 2000)),
            api_key=resolve_env_vars(api_key) if api_key else None,
            embedding_model=section.get("embedding_model"),
            system_prompt=section.get("system_prompt", system_prompt),
        )

    def key_or_env(self, env_var: str) -> str:
        # An unresolved ${VAR} placeholder counts as missing.
        key = self.api_key if self.api_key and "${" not in self.api_key else os.getenv(env_var)
        if not key:
            raise ValueError(f"{self.name} API key not found (set {env_var})")
        return key


class LLMProvider(ABC):
    """A provider that turns one prompt into one completion."""

    def __init__(self, settings: ProviderSettings):
        self.settings = settings
        self.request_count = 0

    async def generate(self, prompt: str, **kwargs) -> str:
        self.request_count += 1
        temperature = kwargs.get("temperature", self.settings.temperature)
        max_tokens = kwargs.get("max_tokens", self.settings.max_tokens)
        system = kwargs.get("system", self.settings.system_prompt)
        try:
            return await self._complete(prompt, system, temperature, max_tokens)
        except Exception as e:
            logger.error(f"{self.settings.name} generation error: {e}")
            raise

    @abstractmethod
    async def _complete(self, prompt: str, system: Optional[str], temperature: float, max_tokens: int) -> str:
        pass

    async def embed(self, text: str) -> List[float]:
        raise NotImplementedError(f"{self.settings.name} provider does not support embeddings")


class OpenAIProvider(LLMProvider):
    """Chat completions and embeddings through ``openai.AsyncOpenAI``."""

    DEFAULT_MODEL = "gpt-4o-mini"
    DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"

    def __init__(self, settings: ProviderSettings):
        super().__init__(settings)
        from openai import AsyncOpenAI

        self.client = AsyncOpenAI(api_key=settings.key_or_env("OPENAI_API_KEY"))
        self.embedding_model = settings.embedding_model or self.DEFAULT_EMBEDDING_MODEL

    async def _complete(self, prompt, system, temperature, max_tokens):
        messages = [{"role": "system", "content": system}] if system else []
        messages.append({"role": "user", "content": prompt})
        response = await self.client.chat.completions.create(
            model=self.settings.model,
            messages=messages,
            max_tokens=max_tokens,
            temperature=temperature,
        )
        return response.choices[0].message.content or ""

    async def embed(self, text: str) -> List[float]:
        try:
            response = await self.client.embeddings.create(model=self.embedding_model, input=text)
        except Exception as e:
            logger.error(f"OpenAI embedding error: {e}")
            raise
        return response.data[0].embedding


class AnthropicProvider(LLMProvider):
    """Messages API through ``anthropic.AsyncAnthropic``. No embeddings."""

    DEFAULT_MODEL = "claude-3-5-sonnet-latest"

    def __init__(self, settings: ProviderSettings):
        super().__init__(settings)
        import anthropic

        self.client = anthropic.AsyncAnthropic(api_key=settings.key_or_env("ANTHROPIC_API_KEY"))

    async def _complete(self, prompt, system, temperature, max_tokens):
        params = {
            "model": self.settings.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            params["system"] = system
        response = await self.client.messages.create(**params)
        return "".join(block.text for block in response.content if getattr(block, "type", "text") == "text")
