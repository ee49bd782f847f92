from __future__ import annotations

from typing import Any

from docqa.providers.base import (
    HTTPProviderAdapter,
    LLMResult,
    ProviderError,
    ProviderRuntimeConfig,
    extract_text,
    optional_int,
)


class OllamaAdapter(HTTPProviderAdapter):
    """Chat through a local Ollama server (``/api/chat``, non-streaming)."""

    provider_label = "Ollama"
    api_root = "/api"

    async def list_models(self, cfg: ProviderRuntimeConfig) -> list[str]:
        data = await self.call_json("GET", self.endpoint(cfg.base_url, "/api/tags"))
        names = [
            item["name"]
            for item in data.get("models") or []
            if isinstance(item, dict) and item.get("name")
        ]
        if not names:
            raise ProviderError("PROVIDER_NO_MODELS", "No models returned by provider.")
        return names

    async def generate(self, cfg: ProviderRuntimeConfig, messages: list[dict]) -> LLMResult:
        body: dict[str, Any] = {"model": cfg.model_name, "messages": messages, "stream": False}
        if cfg.temperature is not None:
            body["options"] = {"temperature": cfg.temperature}
        data = await self.call_json("POST", self.endpoint(cfg.base_url, "/api/chat"), payload=body)
        message = data.get("message")
        # A reply without message content is an empty answer, not an error.
        content = extract_text(message.get("content")) if isinstance(message, dict) else ""
        return LLMResult(
            content=content,
            model_provider=cfg.provider,
            model_name=cfg.model_name,
            prompt_tokens=optional_int(data, "prompt_eval_count"),
            completion_tokens=optional_int(data, "eval_count"),
        )
