"""
Request, decision and response models for EdgeRouter.

Contains the chat request shape accepted by the router, the immutable
RoutingDecision it produces, and the ChatResponse returned by provider
clients.
"""

import time
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class Message(BaseModel):
    """A single chat message.

    Attributes:
        role: Author of the message.
        content: Message text.
    """

    role: Literal["system", "user", "assistant"] = "user"
    content: str = ""


class ChatRequest(BaseModel):
    """An inbound chat-completion request.

    Attributes:
        messages: Conversation so far.  The router rejects an empty list.
        model: Optional upstream model hint forwarded to the provider.
        temperature: Optional sampling temperature.
        max_tokens: Optional generation cap.
    """

    messages: List[Message] = Field(default_factory=list)
    model: Optional[str] = None
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    max_tokens: Optional[int] = Field(default=None, gt=0)


class ReasonCode(str, Enum):
    """Why a provider was chosen, beyond the plain strategy name."""

    SENSITIVE_CONTENT = "sensitive_content"
    SENSITIVE_FALLBACK = "sensitive_fallback"
    BUDGET_EXCEEDED = "budget_exceeded"
    SENSITIVE_BUDGET_EXCEEDED = "sensitive_budget_exceeded"


class RoutingDecision(BaseModel):
    """The outcome of a routing decision.  Immutable once produced.

    Attributes:
        provider: Name of the chosen provider.
        reason: Reason code -- a :class:`ReasonCode` value or the name of
            the strategy that ranked the provider first.
        estimated_cost: Dollar cost estimated from the token count.
        latency_ms: The provider's expected latency used for ranking.
        strategy: Strategy configured on the router.
        tokens: Estimated token count of the request.
        sensitive: Whether the request matched a sensitivity pattern.
        budget_exceeded: True when no healthy provider fit the daily
            budget and the router fell back to the full healthy set.
            This flag is the only budget signal when ``reason`` is
            ``sensitive_fallback``: privacy degradation takes the reason.
        decided_at: When the decision was made.
    """

    model_config = ConfigDict(frozen=True)

    provider: str
    reason: str
    estimated_cost: float = Field(ge=0.0)
    latency_ms: float = Field(ge=0.0)
    strategy: str = ""
    tokens: int = 0
    sensitive: bool = False
    budget_exceeded: bool = False
    decided_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


class Choice(BaseModel):
    index: int = 0
    message: Message
    finish_reason: str = "stop"


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatResponse(BaseModel):
    """An OpenAI-style chat completion returned by a provider client.

    ``routing`` is filled in by :meth:`EdgeRouter.complete`.
    """

    id: str = Field(default_factory=lambda: f"chatcmpl-{uuid.uuid4().hex[:12]}")
    object: str = "chat.completion"
    created: int = Field(default_factory=lambda: int(time.time()))
    model: str = ""
    choices: List[Choice] = Field(default_factory=list)
    usage: Optional[Usage] = None
    routing: Optional[RoutingDecision] = None
