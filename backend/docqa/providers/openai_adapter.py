from __future__ import annotations

from typing import Any, Optional

from docqa.providers.base import (
    HTTPProviderAdapter,
    LLMResult,
    ProviderError,
    ProviderRuntimeConfig,
    extract_text,
    optional_int,
    require_api_key,
)


class OpenAIAdapter(HTTPProviderAdapter):
    """Chat through any OpenAI-compatible ``/v1/chat/completions`` endpoint."""

    provider_label = "OpenAI"
    api_root = "/v1"

    async def list_models(self, cfg: ProviderRuntimeConfig) -> list[str]:
        data = await self.call_json(
            "GET",
            self.endpoint(cfg.base_url, "/v1/models"),
            headers=self._auth_headers(cfg.api_key),
        )
        ids = [
            item["id"] for item in data.get("data") or [] if isinstance(item, dict) and item.get("id")
        ]
        if not ids:
            raise ProviderError("PROVIDER_NO_MODELS", "No models returned by provider.")
        return ids

    async def generate(self, cfg: ProviderRuntimeConfig, messages: list[dict]) -> LLMResult:
        headers = self._auth_headers(cfg.api_key)
        body: dict[str, Any] = {"model": cfg.model_name, "messages": messages}
        if cfg.temperature is not None:
            body["temperature"] = cfg.temperature
        data = await self.call_json(
            "POST",
            self.endpoint(cfg.base_url, "/v1/chat/completions"),
            headers=headers,
            payload=body,
        )
        return LLMResult(
            content=self._first_choice_text(data),
            model_provider=cfg.provider,
            model_name=cfg.model_name,
            prompt_tokens=optional_int(data, "usage", "prompt_tokens"),
            completion_tokens=optional_int(data, "usage", "completion_tokens"),
        )

    @staticmethod
    def _auth_headers(api_key: Optional[str]) -> dict[str, str]:
        return {"Authorization": f"Bearer {require_api_key(api_key, 'OpenAI')}"}

    @staticmethod
    def _first_choice_text(data: dict[str, Any]) -> str:
        choices = data.get("choices")
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            return ""
        message = choices[0].get("message")
        return extract_text(message.get("content")) if isinstance(message, dict) else ""
