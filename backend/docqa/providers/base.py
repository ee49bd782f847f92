from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Protocol

import httpx

RETRYABLE_CODES = frozenset(
    {"PROVIDER_TIMEOUT", "PROVIDER_RATE_LIMIT", "PROVIDER_UPSTREAM", "PROVIDER_CONNECTION_ERROR"}
)
STATUS_CODES = {408: "PROVIDER_TIMEOUT", 429: "PROVIDER_RATE_LIMIT"}


@dataclass
class ProviderRuntimeConfig:
    """Chat model selection and endpoint for one provider."""

    provider: str
    model_name: str
    base_url: str | None = None
    api_key: str | None = None
    temperature: float | None = None


@dataclass
class LLMResult:
    """Text and token accounting of one chat completion."""

    content: str
    model_provider: str
    model_name: str
    prompt_tokens: int | None = None
    completion_tokens: int | None = None


class LLMAdapter(Protocol):
    async def list_models(self, cfg: ProviderRuntimeConfig) -> list[str]:
        """List chat models the endpoint serves."""

    async def generate(self, cfg: ProviderRuntimeConfig, messages: list[dict]) -> LLMResult:
        """Complete a ``[{role, content}, ...]`` chat transcript."""


class ProviderError(RuntimeError):
    """Normalized chat/embedding provider failure.

    ``code`` is a stable machine-readable string; ``retryable`` defaults from
    the code unless given.
    """

    def __init__(
        self,
        code: str,
        message: str,
        retryable: Optional[bool] = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.retryable = code in RETRYABLE_CODES if retryable is None else retryable
        self.status_code = status_code


def build_status_error(response: httpx.Response) -> ProviderError:
    status = response.status_code
    if status in STATUS_CODES:
        code = STATUS_CODES[status]
    elif status >= 500:
        code = "PROVIDER_UPSTREAM"
    else:
        code = "PROVIDER_BAD_STATUS"
    detail = error_detail(response)
    return ProviderError(code, f"Provider returned {status}: {detail}", status_code=status)


def error_detail(response: httpx.Response) -> str:
    """Pick the most specific error text out of a provider error body."""

    fallback = (response.text or "").strip() or "Unknown error from provider."
    try:
        payload: Any = response.json()
    except ValueError:
        return fallback
    if not isinstance(payload, dict):
        return fallback

    error = payload.get("error")
    candidates = [
        error.get("message") if isinstance(error, dict) else None,
        error.get("code") if isinstance(error, dict) else None,
        error,
        payload.get("message"),
    ]
    for candidate in candidates:
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    return fallback


def require_api_key(api_key: Optional[str], provider_name: str) -> str:
    if not api_key:
        raise ProviderError("API_KEY_REQUIRED", f"API key is required for {provider_name}.")
    return api_key


def extract_text(value: Any) -> str:
    """Return a text field from a provider payload fragment, or ``""``."""

    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return "".join(extract_text(item) for item in value)
    if isinstance(value, dict):
        for key in ("text", "content"):
            if key in value:
                return extract_text(value[key])
    return ""


def optional_int(data: Any, *path: str) -> Optional[int]:
    """Read an integer at ``path`` inside nested dicts, else ``None``."""

    value = data
    for key in path:
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value if isinstance(value, int) and not isinstance(value, bool) else None


class HTTPProviderAdapter:
    """JSON-over-HTTP plumbing shared by chat adapters."""

    provider_label = "provider"
    api_root = ""

    def __init__(
        self, timeout_sec: float = 90, http_client: Optional[httpx.AsyncClient] = None
    ) -> None:
        self._timeout = timeout_sec
        self._client = http_client

    def endpoint(self, base_url: Optional[str], path: str) -> str:
        """Join ``base_url`` and ``path`` without doubling the API root."""

        if not base_url:
            raise ProviderError(
                "PROVIDER_BASE_URL_MISSING", f"Base URL is required for {self.provider_label}."
            )
        base = base_url.rstrip("/")
        root = self.api_root
        if root and base.endswith(root) and path.startswith(f"{root}/"):
            path = path[len(root) :]
        return base + path

    async def call_json(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[dict[str, str]] = None,
        payload: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        response = await self._send(method, url, headers=headers, payload=payload)
        if response.status_code >= 400:
            raise build_status_error(response)
        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderError("PROVIDER_PARSE_ERROR", "Invalid JSON from provider.") from exc
        if not isinstance(data, dict):
            raise ProviderError("PROVIDER_PARSE_ERROR", "Provider returned invalid JSON payload.")
        return data

    async def _send(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[dict[str, str]],
        payload: Optional[dict[str, Any]],
    ) -> httpx.Response:
        try:
            if self._client is not None:
                return await self._client.request(
                    method, url, headers=headers, json=payload, timeout=self._timeout
                )
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                return await client.request(method, url, headers=headers, json=payload)
        except httpx.TimeoutException as exc:
            raise ProviderError("PROVIDER_TIMEOUT", "Provider request timed out.") from exc
        except httpx.RequestError as exc:
            raise ProviderError("PROVIDER_CONNECTION_ERROR", "Provider connection failed.") from exc


class MockAdapter:
    """Offline adapter that answers from the prompt it receives."""

    async def list_models(self, cfg: ProviderRuntimeConfig) -> list[str]:
        return [cfg.model_name or "mock-1"]

    async def generate(self, cfg: ProviderRuntimeConfig, messages: list[dict]) -> LLMResult:
        prompts = [str(m.get("content", "")) for m in messages if m.get("role") == "user"]
        lines = prompts[-1].splitlines() if prompts else []
        first_line = next((line.strip() for line in lines if line.strip()), "")
        return LLMResult(
            content=f"[mock] {first_line or '(empty prompt)'}",
            model_provider=cfg.provider,
            model_name=cfg.model_name,
        )
