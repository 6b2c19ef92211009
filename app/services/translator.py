"""Machine translation providers.

Every provider exposes:
- async translate_batch(texts) -> list of str | None, same order and length
- async translate(text) -> str | None

translate_batch raises TranslationError on provider failure; callers decide
how to degrade. Providers:
- deepl: DeepL REST API (DEEPL_API_KEY, DEEPL_API_URL)
- llm:   any OpenAI-compatible chat model via app.services.llm_client
- none:  returns None for everything (translation disabled)
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, List, Optional, Sequence

import httpx

from app.config import IngestSettings
from app.services.llm_client import get_llm_client

logger = logging.getLogger(__name__)

_LANG_NAMES = {"JA": "Japanese", "KO": "Korean", "EN": "English", "ZH": "Chinese"}


class TranslationError(RuntimeError):
    pass


class _BaseTranslator:
    async def translate_batch(self, texts: Sequence[str]) -> List[Optional[str]]:
        raise NotImplementedError

    async def translate(self, text: Optional[str]) -> Optional[str]:
        if not text or not text.strip():
            return None
        try:
            result = await self.translate_batch([text])
        except TranslationError as exc:
            logger.warning("Translation failed: %s", exc)
            return None
        return result[0] if result else None


class DeepLTranslator(_BaseTranslator):
    def __init__(
        self,
        api_key: str,
        *,
        api_url: str = "https://api-free.deepl.com/v2/translate",
        source_lang: str = "JA",
        target_lang: str = "KO",
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.api_url = api_url
        self.source_lang = source_lang
        self.target_lang = target_lang
        self.timeout = timeout
        self._transport = transport

    async def translate_batch(self, texts: Sequence[str]) -> List[Optional[str]]:
        if not texts:
            return []
        payload = {"text": list(texts), "source_lang": self.source_lang, "target_lang": self.target_lang}
        headers = {"Authorization": f"DeepL-Auth-Key {self.api_key}"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(self.api_url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise TranslationError(f"DeepL request failed: {exc}") from exc
        if resp.status_code != 200:
            raise TranslationError(f"DeepL returned HTTP {resp.status_code}: {resp.text[:200]}")
        try:
            items = resp.json().get("translations")
        except ValueError as exc:
            raise TranslationError("DeepL returned invalid JSON") from exc
        if not isinstance(items, list) or len(items) != len(texts):
            raise TranslationError("DeepL response does not match request length")
        return [(i.get("text") or None) if isinstance(i, dict) else None for i in items]


class LLMTranslator(_BaseTranslator):
    """Asks a chat model for a JSON array of translations."""

    def __init__(self, *, source_lang: str = "JA", target_lang: str = "KO", client: Any = None) -> None:
        self.source_lang = source_lang
        self.target_lang = target_lang
        self._client = client

    def _prompt(self, texts: Sequence[str]) -> str:
        src = _LANG_NAMES.get(self.source_lang, self.source_lang)
        dst = _LANG_NAMES.get(self.target_lang, self.target_lang)
        return (
            f"Translate each {src} string in the JSON array below into {dst}. "
            "Reply with only a JSON array of the translated strings, same length and order.\n\n"
            + json.dumps(list(texts), ensure_ascii=False)
        )

    async def translate_batch(self, texts: Sequence[str]) -> List[Optional[str]]:
        if not texts:
            return []
        client = self._client or get_llm_client()
        messages = [
            {"role": "system", "content": "You are a professional e-commerce translator."},
            {"role": "user", "content": self._prompt(texts)},
        ]
        try:
            text, _, _ = await asyncio.to_thread(client.generate, messages)
        except Exception as exc:  # pylint: disable=broad-except
            raise TranslationError(f"LLM request failed: {exc}") from exc
        start, end = text.find("["), text.rfind("]")
        try:
            items = json.loads(text[start:end + 1]) if start != -1 and end > start else None
        except ValueError as exc:
            raise TranslationError("LLM reply is not a JSON array") from exc
        if not isinstance(items, list) or len(items) != len(texts):
            raise TranslationError("LLM reply does not match request length")
        return [str(i).strip() or None if i is not None else None for i in items]


class NullTranslator(_BaseTranslator):
    async def translate_batch(self, texts: Sequence[str]) -> List[Optional[str]]:
        return [None] * len(texts)


def get_translator(settings: IngestSettings) -> _BaseTranslator:
    provider = settings.translator_provider
    if provider == "none":
        return NullTranslator()
    if provider == "llm":
        return LLMTranslator(source_lang=settings.source_lang, target_lang=settings.target_lang)
    if provider == "deepl":
        if not settings.deepl_api_key:
            raise RuntimeError("Missing DeepL API key. Set DEEPL_API_KEY, or TRANSLATOR_PROVIDER=none to disable translation.")
        return DeepLTranslator(
            settings.deepl_api_key,
            api_url=settings.deepl_api_url,
            source_lang=settings.source_lang,
            target_lang=settings.target_lang,
        )
    raise RuntimeError(f"Unknown TRANSLATOR_PROVIDER: {provider!r} (expected deepl, llm or none)")
