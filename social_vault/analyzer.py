from __future__ import annotations

import json
import re
from dataclasses import replace
from typing import Any, Iterable, Protocol

from openai import AsyncOpenAI
from pydantic import ValidationError

from .analyzer_schema import ANALYSIS_JSON_SCHEMA, ANALYSIS_SCHEMA_NAME, AnalysisResult
from .config_schema import OpenAIConfig
from .errors import AnalyzerError
from .models import AIAnalysis, NormalizedContent
from .openai_retry import is_retryable_openai_exception
from .retry import OnRetryFn, RetryConfig, SleepFn, call_with_retries


class _ResponsesAPI(Protocol):
    async def create(self, **kwargs: Any) -> Any: ...


class _OpenAIClient(Protocol):
    responses: _ResponsesAPI


_SYSTEM_INSTRUCTIONS = """\
You turn one social media post about AI tools into a structured knowledge card.

Use ONLY the provided fields. Do not invent features the post does not describe.

Return a JSON object that matches the provided schema EXACTLY.

Guidelines:
- summary: 1-3 sentences in the post's own language.
- usage_scenarios: concrete situations where the tool or technique helps (or empty).
- core_knowledge: the key facts, steps, or insights (or empty).
- extracted_prompts: only complete, copy-pasteable prompts that appear in the post.
  Do not include hashtags, topic labels, or prompt fragments. Empty if none.
"""

_TEXT_FORMAT: dict[str, Any] = {
    "format": {
        "type": "json_schema",
        "name": ANALYSIS_SCHEMA_NAME,
        "strict": True,
        "schema": ANALYSIS_JSON_SCHEMA,
    }
}

_TOPIC_TAG_ONLY_RE = re.compile(r"^(?:#?[^\s#]+(?:\[[^\]]+\])?#?\s*){1,6}$")
_BRACKET_ONLY_RE = re.compile(r"^\[[^\]]+\]$")
_PROMPT_CUE_RE = re.compile(
    r"(?:^/imagine|^/create|提示词|prompt\s*:|system prompt|negative prompt|act as|you are|你是|请扮演"
    r"|--ar\b|--v\b|--stylize\b|--q\b|seed\b|cfg\b)",
    re.IGNORECASE,
)
_CHINESE_CHAR_RE = re.compile(r"[一-鿿]")
_LATIN_WORD_RE = re.compile(r"[A-Za-z0-9][A-Za-z0-9'_-]*")
_INSTRUCTION_PUNCT_RE = re.compile(r"[,:;，。；\n]")

PROMPT_SHARE = "PromptShare"
TOOL_REVIEW = "ToolReview"


def normalize_prompt_list(prompts: Any) -> list[str]:
    if not isinstance(prompts, (list, tuple)):
        return []
    return [s for s in (str(p or "").strip() for p in prompts) if s]


def is_likely_complete_prompt(candidate: Any) -> bool:
    """Heuristic: reject hashtags, bracket labels, and short fragments with no prompt cue."""
    text = str(candidate or "").strip()
    if not text:
        return False
    if _TOPIC_TAG_ONLY_RE.match(text) or _BRACKET_ONLY_RE.match(text):
        return False

    char_count = len(re.sub(r"\s+", "", text))
    latin_words = len(_LATIN_WORD_RE.findall(text))
    has_chinese = bool(_CHINESE_CHAR_RE.search(text))
    has_cue = bool(_PROMPT_CUE_RE.search(text))
    has_punct = bool(_INSTRUCTION_PUNCT_RE.search(text))

    if char_count < 12:
        return False
    if not has_cue and not has_punct and latin_words < 10 and (not has_chinese or char_count < 20):
        return False
    return True


def filter_complete_prompts(prompts: Iterable[Any]) -> list[str]:
    return [p for p in normalize_prompt_list(list(prompts)) if is_likely_complete_prompt(p)]


def resolve_content_type(prompts: Iterable[Any]) -> str:
    return PROMPT_SHARE if filter_complete_prompts(prompts) else TOOL_REVIEW


def _build_user_message(content: NormalizedContent) -> str:
    payload = {
        "platform": content.platform.value,
        "title": content.title,
        "author": content.author,
        "text": content.raw_text,
        "tags": list(content.tags),
        "sourceUrl": content.source_url,
        "publishTime": content.publish_time,
    }
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))


def _extract_output_text(response: Any) -> str:
    direct = (getattr(response, "output_text", None) or "").strip()
    if direct:
        return direct

    output = getattr(response, "output", None) or []
    for item in output:
        content = getattr(item, "content", None) or []
        for part in content:
            text = getattr(part, "text", None)
            if isinstance(text, str) and text.strip():
                return text.strip()

    raise AnalyzerError("OpenAI response did not include output text")


class OpenAIContentAnalyzer:
    """
    One-post-per-call knowledge extraction with Structured Outputs.

    Extracted prompts are filtered through the local completeness heuristic before
    they reach the card.
    """

    def __init__(
        self,
        api_key: str,
        *,
        openai_cfg: OpenAIConfig,
        client: _OpenAIClient | None = None,
        on_retry: OnRetryFn | None = None,
        sleep_fn: SleepFn | None = None,
    ) -> None:
        key = (api_key or "").strip()
        if not key:
            raise ValueError("api_key must be a non-empty string")

        self._cfg = openai_cfg
        self._client: _OpenAIClient = client or AsyncOpenAI(api_key=key)
        self._retry = RetryConfig(
            max_attempts=openai_cfg.retry_attempts,
            delay_seconds=openai_cfg.retry_delay_seconds,
        )
        self._on_retry = on_retry
        self._sleep_fn = sleep_fn

    async def _call_raw(self, content: NormalizedContent) -> str:
        model = self._cfg.analysis_model

        async def _do_call() -> Any:
            return await self._client.responses.create(
                model=model,
                instructions=_SYSTEM_INSTRUCTIONS,
                input=[{"role": "user", "content": _build_user_message(content)}],
                text=_TEXT_FORMAT,
                max_output_tokens=self._cfg.max_output_tokens,
            )

        try:
            response = await call_with_retries(
                _do_call,
                cfg=self._retry,
                is_retryable=is_retryable_openai_exception,
                operation="openai.responses.create",
                on_retry=self._on_retry,
                sleep_fn=self._sleep_fn,
            )
        except Exception as e:
            raise AnalyzerError(f"OpenAI call failed ({model}): {e}") from e

        return _extract_output_text(response)

    async def analyze(self, content: NormalizedContent) -> AIAnalysis:
        if not (content.raw_text or content.title).strip():
            raise ValueError("content has no text to analyze")

        raw = await self._call_raw(content)
        try:
            result = AnalysisResult.model_validate_json(raw)
        except ValidationError as e:
            raise AnalyzerError(f"Failed to parse structured output ({self._cfg.analysis_model}): {e}") from e

        analysis = result.to_analysis()
        return replace(analysis, extracted_prompts=tuple(filter_complete_prompts(analysis.extracted_prompts)))
