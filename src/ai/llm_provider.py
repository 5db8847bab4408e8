"""
LLM Provider abstraction for chapter event authoring.

This module provides a clean interface to LLM services with:
- Support for multiple providers (Anthropic Claude, OpenAI)
- Retry logic
- Response validation and sanitization
- Strict authority boundary enforcement

CRITICAL: The LLM is a NARRATIVE AUTHOR ONLY. It cannot:
- Grant seeds, items, experience, or reputation
- Decide the outcome of a player's choice
- Alter player state in any way
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional
import logging
import os
import re
import time

logger = logging.getLogger(__name__)


class LLMProvider(str, Enum):
    """Supported LLM providers."""

    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    MOCK = "mock"  # For testing


class LLMRole(str, Enum):
    """Roles for messages in conversation."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class LLMMessage:
    """A message in an LLM conversation."""

    role: LLMRole
    content: str


@dataclass
class LLMResponse:
    """Response from an LLM provider."""

    content: str
    model: str
    provider: LLMProvider
    usage: dict[str, int] = field(default_factory=dict)  # tokens used

    # Validation flags
    authority_violations: list[str] = field(default_factory=list)
    sanitized: bool = False

    @property
    def failed(self) -> bool:
        """True when the provider never produced real content."""
        return any(
            v in ("client_unavailable", "request_failed", "no_provider_available")
            for v in self.authority_violations
        )


@dataclass
class LLMConfig:
    """Configuration for LLM provider."""

    provider: LLMProvider = LLMProvider.ANTHROPIC
    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 1024
    temperature: float = 0.7
    api_key: Optional[str] = None

    # Retry policy
    max_retries: int = 3
    retry_delay: float = 1.0

    # Response constraints
    max_response_length: int = 8000


class BaseLLMClient(ABC):
    """
    Abstract base class for LLM clients.

    Subclasses connect to their SDK and send one request; retries and the
    failure responses live here.
    """

    provider: LLMProvider = LLMProvider.MOCK
    api_key_env: str = ""

    def __init__(self, config: LLMConfig):
        self.config = config
        self._client = None
        api_key = config.api_key or (os.getenv(self.api_key_env) if self.api_key_env else None)
        if self.api_key_env and not api_key:
            logger.warning(f"{self.api_key_env} not set. Set the environment variable or pass api_key in config.")
            return
        try:
            self._client = self._connect(api_key)
        except ImportError:
            logger.warning(
                f"{self.provider.value} package not installed. "
                f"Install with: pip install explore-director[llm-{self.provider.value}]"
            )

    def _connect(self, api_key: Optional[str]) -> Any:
        return None

    @abstractmethod
    def _request(self, messages: list[LLMMessage], system_prompt: Optional[str]) -> tuple[str, dict[str, int]]:
        """Send one request; returns (content, token usage)."""

    def is_available(self) -> bool:
        return self._client is not None

    def complete(
        self,
        messages: list[LLMMessage],
        system_prompt: Optional[str] = None,
    ) -> LLMResponse:
        """Generate a completion, retrying with a growing delay."""
        if not self.is_available():
            return LLMResponse(
                content="[LLM unavailable - using fallback]",
                model=self.config.model,
                provider=self.provider,
                authority_violations=["client_unavailable"],
            )

        for attempt in range(self.config.max_retries):
            try:
                content, usage = self._request(messages, system_prompt)
                return LLMResponse(content=content, model=self.config.model, provider=self.provider, usage=usage)
            except Exception as e:
                logger.warning(f"{self.provider.value} API attempt {attempt + 1} failed: {e}")
                if attempt < self.config.max_retries - 1:
                    time.sleep(self.config.retry_delay * (attempt + 1))

        return LLMResponse(
            content="[LLM request failed after retries]",
            model=self.config.model,
            provider=self.provider,
            authority_violations=["request_failed"],
        )


class AnthropicClient(BaseLLMClient):
    """Client for Anthropic Claude API."""

    provider = LLMProvider.ANTHROPIC
    api_key_env = "ANTHROPIC_API_KEY"

    def _connect(self, api_key: Optional[str]) -> Any:
        import anthropic

        return anthropic.Anthropic(api_key=api_key)

    def _request(self, messages: list[LLMMessage], system_prompt: Optional[str]) -> tuple[str, dict[str, int]]:
        response = self._client.messages.create(
            model=self.config.model,
            max_tokens=self.config.max_tokens,
            system=system_prompt or "",
            messages=[
                {"role": msg.role.value, "content": msg.content}
                for msg in messages
                if msg.role != LLMRole.SYSTEM
            ],
        )
        content = response.content[0].text if response.content else ""
        return content, {
            "input_tokens": response.usage.input_tokens,
            "output_tokens": response.usage.output_tokens,
        }


class OpenAIClient(BaseLLMClient):
    """Client for OpenAI API."""

    provider = LLMProvider.OPENAI
    api_key_env = "OPENAI_API_KEY"

    def _connect(self, api_key: Optional[str]) -> Any:
        import openai

        return openai.OpenAI(api_key=api_key)

    def _request(self, messages: list[LLMMessage], system_prompt: Optional[str]) -> tuple[str, dict[str, int]]:
        openai_messages = [{"role": "system", "content": system_prompt}] if system_prompt else []
        openai_messages.extend({"role": msg.role.value, "content": msg.content} for msg in messages)
        response = self._client.chat.completions.create(
            model=self.config.model,
            messages=openai_messages,
            max_tokens=self.config.max_tokens,
            temperature=self.config.temperature,
        )
        return response.choices[0].message.content or "", {
            "prompt_tokens": response.usage.prompt_tokens,
            "completion_tokens": response.usage.completion_tokens,
        }



class MockLLMClient(BaseLLMClient):
    """Mock LLM client for testing."""

    def __init__(self, config: LLMConfig):
        super().__init__(config)
        self._responses: list[str] = []
        self._response_index = 0
        self.calls: list[tuple[Optional[str], list[LLMMessage]]] = []

    def set_responses(self, responses: list[str]) -> None:
        """Set canned responses for testing."""
        self._responses = responses
        self._response_index = 0

    def is_available(self) -> bool:
        return True

    def _request(self, messages: list[LLMMessage], system_prompt: Optional[str]) -> tuple[str, dict[str, int]]:
        self.calls.append((system_prompt, list(messages)))
        if not self._responses:
            return "[Mock LLM response]", {"tokens": 100}
        content = self._responses[self._response_index % len(self._responses)]
        self._response_index += 1
        return content, {"tokens": 100}


class LLMManager:
    """
    Central manager for LLM interactions.

    Provides:
    - Client initialization
    - Response validation and sanitization
    - Authority boundary enforcement
    """

    # Detects narrative text that tries to decide rewards or penalties
    _OUTCOME_PATTERNS = re.compile(
        r"""
        \byou\s+(?:gain|earn|receive|find)\s+\d+      # "you gain 50 seeds"
        | \byou\s+lose\s+\d+                          # "you lose 3 seeds"
        | \b(?:gain|earn|receive)s?\s+\d+\s+(?:seeds?|xp|experience|reputation)\b
        | \b\d+\s+(?:seeds?|xp|experience)\s+(?:gained|awarded|granted)\b
        """,
        re.VERBOSE | re.IGNORECASE,
    )

    def __init__(self, config: Optional[LLMConfig] = None):
        """
        Initialize the LLM manager.

        Args:
            config: LLM configuration. If None, uses defaults.
        """
        self.config = config or LLMConfig()
        self._client: Optional[BaseLLMClient] = None
        self._initialize_clients()

    def _initialize_clients(self) -> None:
        if self.config.provider == LLMProvider.ANTHROPIC:
            self._client = AnthropicClient(self.config)
        elif self.config.provider == LLMProvider.OPENAI:
            self._client = OpenAIClient(self.config)
        elif self.config.provider == LLMProvider.MOCK:
            self._client = MockLLMClient(self.config)

    @property
    def client(self) -> Optional[BaseLLMClient]:
        return self._client

    def is_available(self) -> bool:
        """Check if an LLM is available."""
        return bool(self._client and self._client.is_available())

    def complete(
        self,
        messages: list[LLMMessage],
        system_prompt: Optional[str] = None,
    ) -> LLMResponse:
        """
        Generate an LLM completion with validation.

        Returns:
            Validated and potentially sanitized LLMResponse
        """
        if not self.is_available():
            return LLMResponse(
                content="[No LLM available]",
                model="none",
                provider=LLMProvider.MOCK,
                authority_violations=["no_provider_available"],
            )

        response = self._client.complete(messages, system_prompt)
        return self._validate_response(response)

    def _validate_response(self, response: LLMResponse) -> LLMResponse:
        """
        Flag text where the LLM decides rewards, and truncate oversize output.

        Flags are advisory; the chapter director strips any mechanical payload
        from authored snippets regardless.
        """
        violations = [
            f"outcome_determination_violation:{match.group(0).strip()}"
            for match in self._OUTCOME_PATTERNS.finditer(response.content)
        ]
        if violations:
            response.authority_violations.extend(violations)
            logger.warning(f"LLM authority violations detected: {violations}")

        if len(response.content) > self.config.max_response_length:
            response.content = response.content[: self.config.max_response_length]
            response.sanitized = True

        return response

    def get_mock_client(self) -> Optional[MockLLMClient]:
        """The active client when it is a mock, for tests."""
        return self._client if isinstance(self._client, MockLLMClient) else None


def get_llm_manager(config: Optional[LLMConfig] = None) -> LLMManager:
    """Factory function to get an LLM manager instance."""
    return LLMManager(config)
