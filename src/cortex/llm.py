"""
LLM capability for the dream cycle and importance scoring.

Providers:
- Anthropic (claude-3-haiku, claude-3-5-sonnet)
- OpenAI (gpt-4o-mini, gpt-4o)
- Ollama (local fallback)

generate_text raises CapabilityUnavailable on transport failures and
LLMResponseError on empty output; score_importance never raises and falls
back to rule_based_importance.
"""

import logging
import re
from enum import Enum
from typing import Optional

import requests

from .config import LLMSettings
from .exceptions import CapabilityUnavailable, LLMResponseError

logger = logging.getLogger(__name__)

_FIRST_INT = re.compile(r"\d+")

IMPORTANCE_RULES = (
    (("whale", "massive", "huge", "large"), 0.3),
    (("sold", "sell", "exit", "dump", "left"), 0.2),
    (("ath", "pump", "crash", "rug"), 0.15),
    (("first", "new"), 0.1),
)


def rule_based_importance(description: str) -> float:
    """
    Deterministic importance estimate in [0, 1].

    Base 0.4, raised by keyword groups (size, exits, price extremes,
    novelty) and by questions.
    """
    text = (description or "").lower()
    words = set(re.findall(r"[a-z]+", text))
    score = 0.4
    for keywords, bonus in IMPORTANCE_RULES:
        if words.intersection(keywords):
            score += bonus
    if "?" in text:
        score += 0.15
    return max(0.0, min(1.0, score))


class LLMProvider(Enum):
    """Supported LLM providers"""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    OLLAMA = "ollama"


class LLMClient:
    """
    Text generation over a provider HTTP API.

    Usage:
        llm = LLMClient(provider="anthropic", api_key="...")
        text = llm.generate_text("List two patterns", context=memories_text)
    """

    DEFAULT_MODELS = {
        LLMProvider.OPENAI: "gpt-4o-mini",
        LLMProvider.ANTHROPIC: "claude-3-haiku-20240307",
        LLMProvider.OLLAMA: "llama3.2:3b"
    }

    DEFAULT_BASE_URLS = {
        LLMProvider.OPENAI: "https://api.openai.com/v1",
        LLMProvider.ANTHROPIC: "https://api.anthropic.com/v1",
        LLMProvider.OLLAMA: "http://localhost:11434"
    }

    SYSTEM_PROMPT = (
        "You are the reflective inner voice of a conversational agent. "
        "Answer plainly and concisely."
    )

    def __init__(self,
                 provider: str = "anthropic",
                 api_key: Optional[str] = None,
                 base_url: Optional[str] = None,
                 model: Optional[str] = None,
                 timeout: int = 60,
                 max_tokens: int = 500,
                 temperature: float = 0.7):
        """
        Args:
            provider: LLM provider (anthropic, openai, ollama)
            api_key: API key (required for cloud providers)
            base_url: API endpoint (optional, uses defaults)
            model: Model name (optional, uses defaults)
            timeout: Request timeout in seconds
            max_tokens: Default maximum tokens in a response
            temperature: Sampling temperature
        """
        self.provider = LLMProvider(provider.lower()) if isinstance(provider, str) else provider

        if self.provider != LLMProvider.OLLAMA and not api_key:
            raise ValueError(f"{self.provider.value.upper()}_API_KEY required or pass api_key parameter")

        self.api_key = api_key or ""
        self.base_url = (base_url or self.DEFAULT_BASE_URLS[self.provider]).rstrip("/")
        self.model = model or self.DEFAULT_MODELS[self.provider]
        self.timeout = timeout
        self.max_tokens = max_tokens
        self.temperature = temperature

        self._session = requests.Session()
        self._session.headers.update({"Content-Type": "application/json"})
        if self.provider == LLMProvider.OPENAI:
            self._session.headers["Authorization"] = f"Bearer {self.api_key}"
        elif self.provider == LLMProvider.ANTHROPIC:
            self._session.headers.update({
                "x-api-key": self.api_key,
                "anthropic-version": "2023-06-01"
            })

    def generate_text(self,
                      prompt: str,
                      context: Optional[str] = None,
                      instruction: Optional[str] = None,
                      max_tokens: Optional[int] = None) -> str:
        """
        Generate text for a prompt.

        Args:
            prompt: The request
            context: Optional material the request refers to
            instruction: Optional system instruction, replacing the default
            max_tokens: Override the client's default

        Raises:
            CapabilityUnavailable: request failed or response malformed
            LLMResponseError: provider returned no text
        """
        user_content = prompt if not context else f"{context}\n\n{prompt}"
        system = instruction or self.SYSTEM_PROMPT
        max_tokens = max_tokens or self.max_tokens

        try:
            if self.provider == LLMProvider.ANTHROPIC:
                text = self._generate_anthropic(system, user_content, max_tokens)
            elif self.provider == LLMProvider.OPENAI:
                text = self._generate_openai(system, user_content, max_tokens)
            else:
                text = self._generate_ollama(system, user_content, max_tokens)
        except (requests.RequestException, KeyError, IndexError, TypeError, ValueError) as e:
            raise CapabilityUnavailable("llm", str(e)) from e

        text = (text or "").strip()
        if not text:
            raise LLMResponseError(f"Empty generation from {self.provider.value}")
        return text

    def score_importance(self, description: str) -> float:
        """
        Ask for a 1-10 importance rating and map it to [0, 1].

        Falls back to rule_based_importance on any failure.
        """
        prompt = (
            "On a scale of 1 to 10, where 1 is mundane and 10 is life-changing, "
            "rate the importance of this event for the agent's long-term memory. "
            f"Respond with a single integer only.\n\nEvent: {description}"
        )
        try:
            text = self.generate_text(prompt, max_tokens=10)
            match = _FIRST_INT.search(text)
            if not match:
                raise LLMResponseError(f"No integer in importance response: {text[:50]!r}")
            rating = max(1, min(10, int(match.group())))
            return rating / 10
        except (CapabilityUnavailable, LLMResponseError) as e:
            logger.debug(f"Importance scoring fell back to rules: {e}")
            return rule_based_importance(description)

    def _generate_anthropic(self, system: str, content: str, max_tokens: int) -> str:
        response = self._session.post(
            f"{self.base_url}/messages",
            json={
                "model": self.model,
                "max_tokens": max_tokens,
                "temperature": self.temperature,
                "system": system,
                "messages": [{"role": "user", "content": content}]
            },
            timeout=self.timeout
        )
        response.raise_for_status()
        return response.json()["content"][0]["text"]

    def _generate_openai(self, system: str, content: str, max_tokens: int) -> str:
        response = self._session.post(
            f"{self.base_url}/chat/completions",
            json={
                "model": self.model,
                "messages": [
                    {"role": "system", "content": system},
                    {"role": "user", "content": content}
                ],
                "temperature": self.temperature,
                "max_tokens": max_tokens
            },
            timeout=self.timeout
        )
        response.raise_for_status()
        return response.json()["choices"][0]["message"]["content"]

    def _generate_ollama(self, system: str, content: str, max_tokens: int) -> str:
        """Generate using Ollama (local)"""
        response = self._session.post(
            f"{self.base_url}/api/generate",
            json={
                "model": self.model,
                "system": system,
                "prompt": content,
                "stream": False,
                "options": {
                    "temperature": self.temperature,
                    "num_predict": max_tokens
                }
            },
            timeout=self.timeout
        )
        response.raise_for_status()
        return response.json()["response"]


def create_llm(config: LLMSettings) -> Optional[LLMClient]:
    """Build the configured LLM client, or None when no provider is usable."""
    provider = (config.provider or "").lower()
    if not provider:
        return None
    try:
        return LLMClient(
            provider=provider,
            api_key=config.api_key,
            base_url=config.base_url,
            model=config.model,
            timeout=config.timeout,
            max_tokens=config.max_tokens,
            temperature=config.temperature,
        )
    except ValueError as e:
        logger.warning(f"LLM disabled: {e}")
        return None
