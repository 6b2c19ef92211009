"""Chat client for OpenAI-compatible endpoints, used as a translation backend.

Configuration via environment variables:

- LLM_API_KEY / OPENAI_API_KEY
- LLM_BASE_URL (any OpenAI-compatible endpoint; omit for api.openai.com)
- LLM_MODEL (default: gpt-4o-mini)
"""

from __future__ import annotations

import os
from typing import Any, Dict, List, Optional, Tuple

from app.config import load_env_file

try:
    from openai import OpenAI
except Exception as _exc:  # pragma: no cover - import checked at runtime
    OpenAI = None
    _openai_import_error = _exc


class LLMClient:
    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: float = 60.0,
    ) -> None:
        if OpenAI is None:  # pragma: no cover
            raise RuntimeError(
                "The 'openai' package is not installed. Install with: pip install openai"
                f"\nImport error: {_openai_import_error!r}"
            )
        load_env_file()
        self.api_key = api_key or os.getenv("LLM_API_KEY") or os.getenv("OPENAI_API_KEY")
        if not self.api_key:
            raise RuntimeError("Missing LLM API key. Set LLM_API_KEY or OPENAI_API_KEY.")
        self.base_url = base_url or os.getenv("LLM_BASE_URL") or None
        self.model = model or os.getenv("LLM_MODEL") or "gpt-4o-mini"
        self.timeout = timeout
        if self.base_url:
            self._client = OpenAI(api_key=self.api_key, base_url=self.base_url, timeout=timeout)
        else:
            self._client = OpenAI(api_key=self.api_key, timeout=timeout)

    def generate(
        self,
        messages: List[Dict[str, Any]],
        *,
        temperature: float = 0.0,
        max_tokens: int = 2000,
        model: Optional[str] = None,
    ) -> Tuple[str, Dict[str, Any], str]:
        """Run a chat completion and return (text, usage, model)."""
        payload: Dict[str, Any] = {
            "model": model or self.model,
            "messages": messages,
            "temperature": float(temperature),
            "max_tokens": int(max_tokens),
        }
        resp = self._client.chat.completions.create(**payload)
        text = (resp.choices[0].message.content or "").strip() if resp.choices else ""
        usage = getattr(resp, "usage", None)
        usage_dict = usage.model_dump() if hasattr(usage, "model_dump") else (usage or {})
        return text, usage_dict, getattr(resp, "model", payload["model"]) or payload["model"]


_client_cache: Optional[LLMClient] = None


def get_llm_client() -> LLMClient:
    global _client_cache
    if _client_cache is None:
        _client_cache = LLMClient()
    return _client_cache
