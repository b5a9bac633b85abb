from __future__ import annotations

import json
import unittest
from typing import Any

import httpx
import openai

from social_vault.analyzer import (
    PROMPT_SHARE,
    TOOL_REVIEW,
    OpenAIContentAnalyzer,
    filter_complete_prompts,
    is_likely_complete_prompt,
    resolve_content_type,
)
from social_vault.analyzer_schema import ANALYSIS_JSON_SCHEMA, ANALYSIS_SCHEMA_NAME
from social_vault.config_schema import OpenAIConfig
from social_vault.errors import AnalyzerError
from social_vault.models import NormalizedContent, Platform
from social_vault.openai_retry import is_retryable_openai_exception


class _FakeOutputTextPart:
    def __init__(self, text: str) -> None:
        self.text = text


class _FakeOutputMessage:
    def __init__(self, text: str) -> None:
        self.content = [_FakeOutputTextPart(text)]


class _FakeResponse:
    def __init__(self, *, output_text: str, output: list[Any] | None = None) -> None:
        self.output_text = output_text
        self.output = output or []


class _FakeResponses:
    def __init__(self, responses: list[Any]) -> None:
        self._responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    async def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        if not self._responses:
            raise AssertionError("Fake client received more calls than expected")
        item = self._responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


class _FakeClient:
    def __init__(self, response: Any) -> None:
        responses = response if isinstance(response, list) else [response]
        self.responses = _FakeResponses(responses)


_PROMPT = "You are a senior copywriter, rewrite the following product description in a friendly tone."

_ANALYSIS_JSON = json.dumps(
    {
        "summary": "Three reusable copywriting prompts.",
        "usage_scenarios": ["product pages"],
        "core_knowledge": ["set a role", "limit length"],
        "extracted_prompts": [_PROMPT, "#AI工具", "short one"],
    }
)


def _content(text: str = "Prompt: " + _PROMPT) -> NormalizedContent:
    return NormalizedContent(
        platform=Platform.XIAOHONGSHU,
        source_url="https://www.xiaohongshu.com/explore/abc",
        title="copy prompts",
        raw_text=text,
    )


class TestOpenAIContentAnalyzer(unittest.IsolatedAsyncioTestCase):
    async def test_analyze_sends_json_schema_format_and_filters_prompts(self) -> None:
        cfg = OpenAIConfig(max_output_tokens=321)
        fake = _FakeClient(_FakeResponse(output_text=_ANALYSIS_JSON))
        analyzer = OpenAIContentAnalyzer("sk-test", openai_cfg=cfg, client=fake)  # type: ignore[arg-type]

        analysis = await analyzer.analyze(_content())

        self.assertEqual(analysis.summary, "Three reusable copywriting prompts.")
        self.assertEqual(analysis.core_knowledge, ("set a role", "limit length"))
        self.assertEqual(analysis.extracted_prompts, (_PROMPT,))

        call = fake.responses.calls[0]
        self.assertEqual(call["model"], cfg.analysis_model)
        self.assertEqual(call["max_output_tokens"], 321)
        text_cfg = call["text"]["format"]
        self.assertEqual(text_cfg["type"], "json_schema")
        self.assertEqual(text_cfg["name"], ANALYSIS_SCHEMA_NAME)
        self.assertTrue(text_cfg["strict"])
        self.assertEqual(text_cfg["schema"], ANALYSIS_JSON_SCHEMA)

        sent = json.loads(call["input"][0]["content"])
        self.assertEqual(sent["platform"], "Xiaohongshu")
        self.assertEqual(sent["title"], "copy prompts")

    async def test_falls_back_to_output_items(self) -> None:
        fake = _FakeClient(_FakeResponse(output_text="", output=[_FakeOutputMessage(_ANALYSIS_JSON)]))
        analyzer = OpenAIContentAnalyzer("sk-test", openai_cfg=OpenAIConfig(), client=fake)  # type: ignore[arg-type]

        analysis = await analyzer.analyze(_content())

        self.assertEqual(analysis.usage_scenarios, ("product pages",))

    async def test_parse_failure_raises(self) -> None:
        fake = _FakeClient(_FakeResponse(output_text="{not-json"))
        analyzer = OpenAIContentAnalyzer("sk-test", openai_cfg=OpenAIConfig(), client=fake)  # type: ignore[arg-type]

        with self.assertRaises(AnalyzerError):
            await analyzer.analyze(_content())

    async def test_call_failure_raises_without_retry_for_client_errors(self) -> None:
        fake = _FakeClient([ValueError("bad request")])
        analyzer = OpenAIContentAnalyzer("sk-test", openai_cfg=OpenAIConfig(), client=fake)  # type: ignore[arg-type]

        with self.assertRaises(AnalyzerError):
            await analyzer.analyze(_content())
        self.assertEqual(len(fake.responses.calls), 1)

    async def test_empty_content_is_rejected(self) -> None:
        fake = _FakeClient([])
        analyzer = OpenAIContentAnalyzer("sk-test", openai_cfg=OpenAIConfig(), client=fake)  # type: ignore[arg-type]

        empty = NormalizedContent(platform=Platform.TWITTER, source_url="https://twitter.com/i/web/status/1")
        with self.assertRaises(ValueError):
            await analyzer.analyze(empty)
        self.assertEqual(fake.responses.calls, [])

    def test_requires_api_key(self) -> None:
        with self.assertRaises(ValueError):
            OpenAIContentAnalyzer("", openai_cfg=OpenAIConfig(), client=_FakeClient([]))  # type: ignore[arg-type]


class TestPromptHeuristics(unittest.TestCase):
    def test_rejects_tags_labels_and_fragments(self) -> None:
        for text in ("", "#AI[话题]#", "#AI #prompt", "[Prompt]", "agent skills", "short one"):
            with self.subTest(text=text):
                self.assertFalse(is_likely_complete_prompt(text))

    def test_accepts_real_prompts(self) -> None:
        for text in (
            _PROMPT,
            "/imagine prompt: a quiet lakeside cabin at dawn, film grain --ar 3:2 --v 6",
            "You are a principal engineer. Review this code for security and performance.",
        ):
            with self.subTest(text=text):
                self.assertTrue(is_likely_complete_prompt(text))

    def test_content_type(self) -> None:
        self.assertEqual(filter_complete_prompts([" ", None, _PROMPT]), [_PROMPT])
        self.assertEqual(resolve_content_type([_PROMPT]), PROMPT_SHARE)
        self.assertEqual(resolve_content_type(["#tag"]), TOOL_REVIEW)
        self.assertEqual(resolve_content_type([]), TOOL_REVIEW)


class _StatusError(Exception):
    def __init__(self, status_code: int) -> None:
        super().__init__(f"http {status_code}")
        self.status_code = status_code


class TestOpenAIRetryPolicy(unittest.TestCase):
    def test_transient_failures_are_retryable(self) -> None:
        req = httpx.Request("POST", "https://api.openai.com/v1/responses")
        self.assertEqual(is_retryable_openai_exception(openai.APITimeoutError(request=req)), (True, "timeout"))
        self.assertEqual(
            is_retryable_openai_exception(openai.APIConnectionError(request=req)),
            (True, "connection_error"),
        )
        self.assertEqual(is_retryable_openai_exception(_StatusError(503)), (True, "http_503"))
        self.assertEqual(is_retryable_openai_exception(_StatusError(429)), (True, "http_429"))

    def test_client_errors_are_not_retryable(self) -> None:
        self.assertEqual(is_retryable_openai_exception(_StatusError(400)), (False, None))
        self.assertEqual(is_retryable_openai_exception(ValueError("x")), (False, None))


if __name__ == "__main__":
    unittest.main()
