"""
Provider client abstraction for EdgeRouter.

Provides a unified ``ProviderClient`` Protocol for handing a routed
request to a backend.  The router depends only on the protocol; the
:class:`HttpProviderClient` speaks the OpenAI-compatible
chat-completions wire format, and :class:`MockProviderClient` returns
canned responses for development and testing.
"""

import logging
import threading
from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple, runtime_checkable

import httpx
from pydantic import ValidationError

from edgerouter.config import get_settings
from edgerouter.exceptions import ProviderError
from edgerouter.providers.registry import Provider, estimate_tokens
from edgerouter.schemas import ChatRequest, ChatResponse, Choice, Message, Usage

logger = logging.getLogger(__name__)


@runtime_checkable
class ProviderClient(Protocol):
    """Protocol for provider backends.

    Implementations perform exactly one outbound call; retries are the
    caller's business.
    """

    def send(self, provider: Provider, request: ChatRequest) -> ChatResponse:
        """Send ``request`` to ``provider`` and return its completion.

        Raises:
            ProviderError: If the call fails or the reply is malformed.
        """
        ...


# ------------------------------------------------------------------
# HTTP (OpenAI-compatible) implementation
# ------------------------------------------------------------------


class HttpProviderClient:
    """Calls OpenAI-compatible ``/chat/completions`` endpoints over httpx.

    Args:
        api_keys: Provider name -> bearer token.  Providers without a key
            are called unauthenticated (e.g. a local Ollama server).
        timeout_seconds: Per-request timeout.
        http_client: Pre-built ``httpx.Client`` (testing / pooling).
    """

    def __init__(
        self,
        api_keys: Optional[Mapping[str, str]] = None,
        timeout_seconds: Optional[float] = None,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        self._api_keys = dict(api_keys or {})
        self._timeout = (
            timeout_seconds
            if timeout_seconds is not None
            else get_settings().providers.request_timeout_seconds
        )
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(timeout=self._timeout)

    def send(self, provider: Provider, request: ChatRequest) -> ChatResponse:
        """POST the request to the provider's endpoint.

        Raises:
            ProviderError: On a missing endpoint, transport error, non-2xx
                status, or an unparseable body.
        """
        if not provider.endpoint:
            raise ProviderError(f"Provider '{provider.name}' has no endpoint")

        payload = self._build_payload(provider, request)
        headers = {"Content-Type": "application/json"}
        api_key = self._api_keys.get(provider.name)
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        try:
            response = self._client.post(
                provider.endpoint,
                json=payload,
                headers=headers,
                timeout=self._timeout,
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as exc:
            raise ProviderError(
                f"{provider.name} returned HTTP {exc.response.status_code}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise ProviderError(f"{provider.name} call failed: {exc}") from exc

        try:
            result = ChatResponse.model_validate(data)
        except ValidationError as exc:
            raise ProviderError(
                f"{provider.name} returned a malformed completion: {exc}"
            ) from exc

        logger.debug(
            "Provider call completed",
            extra={"provider": provider.name, "status": response.status_code},
        )
        return result

    def close(self) -> None:
        """Close the underlying connection pool if this client created it."""
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "HttpProviderClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @staticmethod
    def _build_payload(provider: Provider, request: ChatRequest) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": request.model or provider.model or provider.name,
            "messages": [m.model_dump() for m in request.messages],
        }
        if request.temperature is not None:
            payload["temperature"] = request.temperature
        if request.max_tokens is not None:
            payload["max_tokens"] = request.max_tokens
        return payload


# ------------------------------------------------------------------
# Mock implementation
# ------------------------------------------------------------------

_CANNED_REPLIES: Dict[str, str] = {
    "cloudflare": "[Cloudflare] Fast and affordable response",
    "openai": "[OpenAI] High quality, reliable response",
    "anthropic": "[Anthropic] Thoughtful and detailed response",
    "local": "[Local] Private and secure response",
    "groq": "[Groq] Lightning fast response",
    "together": "[Together] Collaborative AI response",
}


class MockProviderClient:
    """Deterministic stand-in for real providers.

    Never touches the network.  Every call is recorded so tests can
    assert on what the router handed off.

    Args:
        fail_for: Provider names whose calls raise :class:`ProviderError`.
    """

    def __init__(self, fail_for: Optional[List[str]] = None) -> None:
        self._fail_for = set(fail_for or [])
        self._lock = threading.Lock()
        self._calls: List[Tuple[str, ChatRequest]] = []

    def send(self, provider: Provider, request: ChatRequest) -> ChatResponse:
        with self._lock:
            self._calls.append((provider.name, request))
            call_number = len(self._calls)

        if provider.name in self._fail_for:
            raise ProviderError(f"Simulated failure for {provider.name}")

        prompt_tokens = estimate_tokens(request.messages)
        reply = _CANNED_REPLIES.get(provider.name, f"[{provider.name}] Response")
        completion_tokens = estimate_tokens([Message(content=reply)])
        return ChatResponse(
            id=f"{provider.name}-{call_number}",
            model=request.model or provider.model or f"{provider.name}-model",
            choices=[
                Choice(message=Message(role="assistant", content=reply))
            ],
            usage=Usage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
        )

    @property
    def calls(self) -> List[Tuple[str, ChatRequest]]:
        """``(provider_name, request)`` for every call so far."""
        with self._lock:
            return list(self._calls)
