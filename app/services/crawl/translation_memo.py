"""Change-aware translation reuse.

A stored translation is reused only when the stored source text is exactly the
text just scraped. Everything else is gathered into one order-preserving batch
call, so re-crawling an unchanged page costs no translation requests.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from .base import ColorOption, ProductRecord

logger = logging.getLogger(__name__)


class Decision(str, enum.Enum):
    SKIP = "skip"
    TRANSLATE = "translate"


@dataclass
class TranslationField:
    source_text: Optional[str]
    prior_source_text: Optional[str] = None
    prior_translated_text: Optional[str] = None

    @property
    def decision(self) -> Decision:
        return decide(self)


def decide(field: TranslationField) -> Decision:
    if field.prior_translated_text and field.prior_source_text == field.source_text:
        return Decision.SKIP
    return Decision.TRANSLATE


def _is_blank(text: Optional[str]) -> bool:
    return not isinstance(text, str) or not text.strip()


class TranslationMemo:
    """Wraps a translation service (anything with an async translate_batch)."""

    def __init__(self, service: Any, *, batch_limit: int = 50) -> None:
        self.service = service
        self.batch_limit = max(1, int(batch_limit))
        self.calls = 0

    async def translate_batch(self, texts: Sequence[Optional[str]]) -> List[Optional[str]]:
        """Same length and order as `texts`; blanks come back as None unsent.

        A provider failure turns that chunk into Nones instead of raising.
        """
        out: List[Optional[str]] = [None] * len(texts)
        pending = [i for i, t in enumerate(texts) if not _is_blank(t)]
        for start in range(0, len(pending), self.batch_limit):
            chunk = pending[start:start + self.batch_limit]
            payload = [texts[i] for i in chunk]
            self.calls += 1
            try:
                translated = await self.service.translate_batch(payload)
            except Exception as exc:  # pylint: disable=broad-except
                logger.warning("Translation batch of %d failed: %s", len(payload), exc)
                continue
            if not isinstance(translated, list) or len(translated) != len(payload):
                logger.warning("Malformed translation response for batch of %d", len(payload))
                continue
            for i, value in zip(chunk, translated):
                out[i] = value if isinstance(value, str) and value.strip() else None
        return out

    async def resolve(self, fields: Sequence[TranslationField]) -> List[Optional[str]]:
        """Target text per field: reused, freshly translated, or prior/None on failure."""
        results: List[Optional[str]] = [None] * len(fields)
        to_translate: List[int] = []
        for i, f in enumerate(fields):
            if _is_blank(f.source_text):
                continue
            if decide(f) is Decision.SKIP:
                results[i] = f.prior_translated_text
            else:
                to_translate.append(i)

        skipped = sum(1 for f in fields if not _is_blank(f.source_text)) - len(to_translate)
        if skipped:
            logger.debug("Reusing %d stored translations", skipped)
        if not to_translate:
            return results

        translated = await self.translate_batch([fields[i].source_text for i in to_translate])
        for i, value in zip(to_translate, translated):
            results[i] = value if value is not None else fields[i].prior_translated_text
        return results

    async def translate_names(self, names: Sequence[str], priors: Sequence[Optional[Dict[str, Any]]]) -> List[Optional[str]]:
        """Names of categories or product cards against their stored rows."""
        fields = [
            TranslationField(
                source_text=name,
                prior_source_text=(prior or {}).get("name_source"),
                prior_translated_text=(prior or {}).get("name_target"),
            )
            for name, prior in zip(names, priors)
        ]
        return await self.resolve(fields)

    async def translate_record(self, record: ProductRecord, prior: Optional[Dict[str, Any]]) -> None:
        """Fill description/material/spec/colour targets in one batched call."""
        prior = prior or {}
        prior_specs_source = prior.get("specs_source") or {}
        prior_specs_target = prior.get("specs_target") or {}
        prior_colors: Dict[str, Dict[str, Any]] = {}
        for c in prior.get("color_options") or []:
            if isinstance(c, dict) and c.get("name_source"):
                prior_colors[c["name_source"]] = c

        fields: List[TranslationField] = [
            TranslationField(record.description_source, prior.get("description_source"), prior.get("description_target")),
            TranslationField(record.material_source, prior.get("material_source"), prior.get("material_target")),
        ]
        spec_keys = list(record.specs_source.keys())
        for key in spec_keys:
            fields.append(
                TranslationField(record.specs_source[key], prior_specs_source.get(key), prior_specs_target.get(key))
            )
        for color in record.color_options:
            stored = prior_colors.get(color.name_source) or {}
            fields.append(TranslationField(color.name_source, stored.get("name_source"), stored.get("name_target")))

        targets = await self.resolve(fields)
        record.description_target = targets[0]
        record.material_target = targets[1]
        offset = 2
        record.specs_target = {key: targets[offset + n] for n, key in enumerate(spec_keys)}
        offset += len(spec_keys)
        record.color_options = [
            ColorOption(name_source=c.name_source, name_target=targets[offset + n])
            for n, c in enumerate(record.color_options)
        ]
