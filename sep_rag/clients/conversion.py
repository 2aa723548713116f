"""Best-effort natural-language conversion through the OpenAI chat API.

Every call carries a literal fallback. A missing API key, a set cancellation
event or any API failure yields the fallback instead of an error, so text
normalization never fails because the language model is unavailable.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Sequence, Tuple

from openai import OpenAI, OpenAIError

from sep_rag.config import SepRagConfig

logger = logging.getLogger(__name__)

SOURCE_NAME = "Stanford Encyclopedia of Philosophy"

TEX_PROMPT = """Rewrite the paragraph below so that every piece of TeX notation becomes \
plain English. Leave all other words exactly as they are.

Reply with the converted paragraph only: no TeX, no code fences, no quotes, \
no commentary.

Example: "Y = {{x \\in Z \\mid \\phi(x)}}" becomes "Y is the set of all x in Z \
such that phi(x) holds".

Context: {context}
Paragraph:
{text}
"""

TABLE_PROMPT = """Summarize the HTML table below in a few plain sentences. Describe \
what the table is for, how it is organized and the main relationships it shows \
rather than transcribing every cell. Translate any TeX notation into plain English.

Reply with the summary only: no HTML, no markdown, no TeX.

Context: {context}
Table:
{table}
"""


def context_hint(article_title: str = "", section_heading: str = "") -> str:
    """Return ``"Stanford Encyclopedia of Philosophy - title - heading"``."""

    parts = [SOURCE_NAME]
    if article_title:
        parts.append(article_title)
    if section_heading:
        parts.append(section_heading)
    return " - ".join(parts)


class ConversionClient:
    """Fan out prompt completions with per-item fallbacks."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        model: str = "gpt-5-nano",
        max_workers: int = 8,
        timeout: float = 30.0,
        client: Optional[OpenAI] = None,
    ) -> None:
        if client is None and api_key:
            client = OpenAI(api_key=api_key, timeout=timeout, max_retries=0)
        self._client = client
        self.model = model
        self.max_workers = max_workers

    @classmethod
    def from_config(cls, config: SepRagConfig) -> "ConversionClient":
        return cls(
            config.openai_api_key,
            model=config.openai_model,
            max_workers=config.conversion_max_workers,
            timeout=config.request_timeout_s,
        )

    @property
    def enabled(self) -> bool:
        return self._client is not None

    def complete(
        self,
        prompt: str,
        fallback: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> str:
        """Return the model's reply to ``prompt`` or ``fallback``."""

        if self._client is None:
            return fallback
        if cancel_event is not None and cancel_event.is_set():
            return fallback

        try:
            response = self._client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
            )
        except OpenAIError as exc:
            logger.warning("Conversion request failed, using fallback: %s", exc)
            return fallback

        if cancel_event is not None and cancel_event.is_set():
            return fallback
        if not response.choices:
            return fallback
        text = (response.choices[0].message.content or "").strip()
        return text or fallback

    def complete_batch(
        self,
        requests: Sequence[Tuple[str, str]],
        cancel_event: Optional[threading.Event] = None,
    ) -> List[str]:
        """Run ``(prompt, fallback)`` pairs in parallel; results keep input order."""

        if not requests:
            return []
        if self._client is None:
            return [fallback for _, fallback in requests]

        workers = max(1, min(self.max_workers, len(requests)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            return list(
                pool.map(
                    lambda pair: self.complete(pair[0], pair[1], cancel_event),
                    requests,
                )
            )

    def convert_tex_batch(
        self,
        texts: Sequence[str],
        article_title: str = "",
        section_heading: str = "",
        cancel_event: Optional[threading.Event] = None,
    ) -> List[str]:
        """Rewrite residual TeX as prose; each text falls back to itself."""

        if not texts:
            return []
        context = context_hint(article_title, section_heading)
        logger.info("Converting TeX to natural language for %d units", len(texts))
        requests = [(TEX_PROMPT.format(context=context, text=text), text) for text in texts]
        return self.complete_batch(requests, cancel_event)

    def summarize_tables_batch(
        self,
        tables: Sequence[str],
        article_title: str = "",
        section_heading: str = "",
        cancel_event: Optional[threading.Event] = None,
    ) -> List[str]:
        """Summarize table HTML; failures yield an empty string."""

        if not tables:
            return []
        context = context_hint(article_title, section_heading)
        logger.info("Summarizing %d tables", len(tables))
        requests = [(TABLE_PROMPT.format(context=context, table=table), "") for table in tables]
        return self.complete_batch(requests, cancel_event)
