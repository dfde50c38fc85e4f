"""
LLM Manager - Participant Runtime
=================================
Backs the group chat agents with OpenAI / Azure OpenAI chat completions.
Given a selected agent and the conversation history, produces the agent's
next message. Provider fallback is handled here; the routing loop itself
never retries.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Any, List, Optional, Sequence, Protocol

from openai import AsyncAzureOpenAI, AsyncOpenAI

from ..core.config import Settings, settings as default_settings
from ..models.agents import AgentDefinition
from ..models.conversation import Message, MessageRole

logger = logging.getLogger(__name__)


class ParticipantInvocationError(RuntimeError):
    """Raised when an agent could not produce a message"""

    def __init__(self, agent_name: str, message: str):
        self.agent_name = agent_name
        super().__init__(f"{agent_name}: {message}")


class ParticipantRuntime(Protocol):
    """Anything that can make an agent speak"""

    async def invoke(self, agent: AgentDefinition, history: Sequence[Message]) -> Message:
        ...


@dataclass
class LLMRequest:
    """One chat completion call"""
    messages: List[Dict[str, str]]
    system_prompt: Optional[str] = None
    temperature: float = 0.3
    max_tokens: Optional[int] = None
    timeout: float = 30.0


@dataclass
class LLMResponse:
    """Completion text plus provider bookkeeping"""
    content: str
    usage: Optional[Dict[str, int]] = None
    model: str = ""
    provider: str = ""
    response_time_ms: int = 0


def build_chat_messages(
    history: Sequence[Message],
    agent: AgentDefinition,
    limit: Optional[int] = None
) -> List[Dict[str, str]]:
    """Map conversation history onto chat-completion messages for one agent"""
    window = list(history)[-limit:] if limit else list(history)
    messages = []

    for message in window:
        if message.role == MessageRole.SYSTEM:
            messages.append({"role": "system", "content": message.content})
        elif message.role == MessageRole.USER or not message.author:
            messages.append({"role": "user", "content": message.content})
        else:
            entry = {"role": "assistant", "content": message.content}
            if message.author != agent.name:
                entry["name"] = message.author
            messages.append(entry)

    return messages


class BaseLLMProvider(ABC):
    """A chat-completions backend. Subclasses build the client in initialize()."""

    def __init__(self, provider_name: str):
        self.provider_name = provider_name
        self.client = None
        self.is_available = False

    @abstractmethod
    async def initialize(self) -> bool:
        """Create the client; False when credentials are missing"""

    @property
    @abstractmethod
    def model(self) -> str:
        """Model or deployment name sent with each request"""

    def _payload(self, request: LLMRequest) -> Dict[str, Any]:
        system = [{"role": "system", "content": request.system_prompt}] if request.system_prompt else []
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": system + list(request.messages),
            "temperature": request.temperature,
            "timeout": request.timeout
        }
        if request.max_tokens:
            payload["max_tokens"] = request.max_tokens
        return payload

    async def complete(self, request: LLMRequest) -> LLMResponse:
        if not self.client or not self.is_available:
            raise RuntimeError(f"{self.provider_name} provider not initialized")

        started = time.time()
        completion = await self.client.chat.completions.create(**self._payload(request))
        choice = completion.choices[0]

        return LLMResponse(
            content=choice.message.content or "",
            usage=completion.usage.model_dump() if completion.usage else None,
            model=completion.model,
            provider=self.provider_name,
            response_time_ms=int((time.time() - started) * 1000)
        )

    async def health_check(self) -> bool:
        """One-token completion against the configured model"""
        if not self.client:
            return False
        try:
            completion = await self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": "ping"}],
                max_tokens=1,
                timeout=10
            )
        except Exception as e:
            logger.warning(f"{self.provider_name} health check failed: {e}")
            return False
        return bool(completion.choices)


class OpenAIProvider(BaseLLMProvider):
    """OpenAI provider"""

    def __init__(self, api_key: Optional[str], default_model: str = "gpt-4o-mini", timeout: float = 60.0):
        super().__init__("openai")
        self.api_key = api_key
        self.default_model = default_model
        self.timeout = timeout

    @property
    def model(self) -> str:
        return self.default_model

    async def initialize(self) -> bool:
        if not self.api_key:
            logger.warning("OpenAI API key not provided")
            return False

        self.client = AsyncOpenAI(api_key=self.api_key, timeout=self.timeout)
        self.is_available = True
        logger.info("OpenAI provider initialized")
        return True


class AzureOpenAIProvider(BaseLLMProvider):
    """Azure OpenAI deployment; the deployment name is sent as the model"""

    def __init__(
        self,
        api_key: Optional[str],
        endpoint: Optional[str],
        deployment_name: str = "gpt-4o",
        api_version: str = "2024-10-01-preview",
        timeout: float = 60.0
    ):
        super().__init__("azure_openai")
        self.api_key = api_key
        self.endpoint = endpoint
        self.deployment_name = deployment_name
        self.api_version = api_version
        self.timeout = timeout

    @property
    def model(self) -> str:
        return self.deployment_name

    async def initialize(self) -> bool:
        if not self.api_key or not self.endpoint:
            logger.warning("Azure OpenAI endpoint or key missing, provider disabled")
            return False

        self.client = AsyncAzureOpenAI(
            api_key=self.api_key,
            azure_endpoint=self.endpoint,
            api_version=self.api_version,
            timeout=self.timeout
        )
        self.is_available = True
        logger.info(f"Azure OpenAI provider initialized for deployment {self.deployment_name}")
        return True


class LLMManager:
    """Participant runtime over one or more LLM providers with fallback"""

    def __init__(self, config: Optional[Settings] = None, azure_api_key: Optional[str] = None):
        self.config = config or default_settings
        self.azure_api_key = azure_api_key or self.config.azure_openai_api_key
        self.providers: Dict[str, BaseLLMProvider] = {}
        self.fallback_enabled = self.config.enable_fallback

        # Usage tracking
        self.usage_stats = {
            "total_requests": 0,
            "total_tokens": 0,
            "provider_usage": {}
        }

    async def initialize(self) -> bool:
        """Initialize all configured providers, Azure OpenAI first"""
        logger.info("Initializing LLM Manager...")

        azure_provider = AzureOpenAIProvider(
            api_key=self.azure_api_key,
            endpoint=self.config.azure_openai_endpoint,
            deployment_name=self.config.azure_openai_deployment_name,
            api_version=self.config.azure_openai_api_version,
            timeout=self.config.participant_timeout_seconds
        )
        if await azure_provider.initialize():
            self.providers[azure_provider.provider_name] = azure_provider

        openai_provider = OpenAIProvider(
            api_key=self.config.openai_api_key,
            default_model=self.config.openai_model,
            timeout=self.config.participant_timeout_seconds
        )
        if await openai_provider.initialize():
            self.providers[openai_provider.provider_name] = openai_provider

        if not self.providers:
            logger.error("No LLM providers initialized")
            return False

        logger.info(f"LLM Manager initialized with {len(self.providers)} providers: {list(self.providers.keys())}")
        return True

    def _available_providers(self) -> List[BaseLLMProvider]:
        return [p for p in self.providers.values() if p.is_available]

    def _record_usage(self, response: LLMResponse) -> None:
        if not response.usage:
            return
        tokens = response.usage.get("total_tokens", 0)
        self.usage_stats["total_tokens"] += tokens
        provider_stats = self.usage_stats["provider_usage"].setdefault(
            response.provider, {"requests": 0, "tokens": 0}
        )
        provider_stats["requests"] += 1
        provider_stats["tokens"] += tokens

    async def complete(self, request: LLMRequest) -> LLMResponse:
        """Try providers in registration order; later ones only when fallback is enabled"""
        self.usage_stats["total_requests"] += 1

        candidates = self._available_providers()
        if not candidates:
            raise RuntimeError("No available LLM providers")
        if not self.fallback_enabled:
            candidates = candidates[:1]

        errors: List[str] = []
        for attempt, provider in enumerate(candidates):
            if attempt:
                logger.info(f"Falling back to {provider.provider_name}")
            try:
                response = await provider.complete(request)
            except Exception as e:
                logger.error(f"{provider.provider_name} completion attempt failed: {e}")
                errors.append(f"{provider.provider_name}: {e}")
                continue

            self._record_usage(response)
            return response

        raise RuntimeError(f"All LLM providers failed ({'; '.join(errors)})")

    async def invoke(self, agent: AgentDefinition, history: Sequence[Message]) -> Message:
        """Produce the next message authored by the given agent"""
        request = LLMRequest(
            messages=build_chat_messages(history, agent, self.config.history_context_limit),
            system_prompt=agent.instructions,
            temperature=agent.temperature,
            max_tokens=agent.max_tokens,
            timeout=self.config.participant_timeout_seconds
        )

        try:
            response = await asyncio.wait_for(
                self.complete(request),
                timeout=self.config.participant_timeout_seconds
            )
        except asyncio.TimeoutError as e:
            raise ParticipantInvocationError(
                agent.name, f"timed out after {self.config.participant_timeout_seconds}s"
            ) from e
        except Exception as e:
            raise ParticipantInvocationError(agent.name, str(e)) from e

        return Message(
            author=agent.name,
            content=response.content,
            role=MessageRole.ASSISTANT,
            metadata={
                "agent_id": agent.id,
                "model": response.model,
                "provider": response.provider,
                "response_time_ms": response.response_time_ms
            }
        )

    async def get_usage_stats(self) -> Dict[str, Any]:
        return dict(self.usage_stats)

    async def health_check(self) -> Dict[str, bool]:
        """Provider name -> whether a one-token completion succeeded"""
        return {name: await provider.health_check() for name, provider in self.providers.items()}
