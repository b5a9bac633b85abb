from __future__ import annotations

import copy
import json
from typing import Any

import httpx

from .analyzer import filter_complete_prompts
from .config import RuntimeSecrets
from .config_schema import AppConfig
from .models import AIAnalysis, NormalizedContent

OFFLINE_NOTE_ID = "64f1a2b3c4d5e6f7a8b9c0d1"
OFFLINE_XSEC_TOKEN = "ABoffline+token="
OFFLINE_TWEET_ID = "1790000000000000001"

OFFLINE_SECRETS = RuntimeSecrets(
    justone_token="offline-justone",
    tikhub_token="offline-tikhub",
    x_bearer_token="offline-x",
    openai_api_key=None,
)

_NOTE: dict[str, Any] = {
    "id": OFFLINE_NOTE_ID,
    "title": "3 prompts I use every day for product copy",
    "desc": (
        "Saving this for later. Prompt: You are a senior copywriter, rewrite the following "
        "product description in a friendly tone, keep it under 80 words. #AI工具 #提示词"
    ),
    "user": {"nickname": "OfflineCreator", "images": "https://sns-avatar.example/offline.jpg"},
    "images_list": [
        {"fileid": "1040g2sg30offline0001", "url": "https://sns-img.example/a?format/heif"},
        {"url_size_large": "https://sns-img.example/b?imageView2/format/heif"},
    ],
    "cover_image_index": 0,
    "tag_list": [{"name": "AI工具"}, {"name": "提示词"}],
    "feature_tags": ["效率", {"name": "AI工具"}],
    "liked_count": "1.2w",
    "collected_count": "3千",
    "comments_count": 87,
    "shared_count": "1,024",
    "corner_tag_info": [{"type": "publish_time", "text": "2024-05-18"}],
    "xsec_token": OFFLINE_XSEC_TOKEN,
}

_SEARCH_NOTE_2: dict[str, Any] = {
    "id": "64f1a2b3c4d5e6f7a8b9c0d2",
    "display_title": "Midjourney style cheat sheet",
    "desc": "/imagine prompt: a quiet lakeside cabin at dawn, film grain --ar 3:2 --v 6",
    "user": {"nick_name": "PromptNotes"},
    "cover": {"url_default": "https://sns-img.example/c?format/heif"},
    "interact_info": {"liked_count": "856", "collected_count": "402", "comment_count": "31"},
    "xsec_token": "ABsecond",
}

_TWEET_PAYLOAD: dict[str, Any] = {
    "data": {
        "id": OFFLINE_TWEET_ID,
        "text": "Short version of a long thread",
        "note_tweet": {"text": "Full thread: how I chain three small models for research summaries. #LLM #agents"},
        "author_id": "42",
        "created_at": "2024-05-20T08:00:00.000Z",
        "public_metrics": {"like_count": 512, "bookmark_count": 128, "reply_count": 12, "retweet_count": 40},
        "entities": {"hashtags": [{"tag": "LLM"}, {"tag": "agents"}]},
    },
    "includes": {
        "users": [{"id": "42", "username": "offline_dev", "name": "Offline Dev", "profile_image_url": "https://pbs.example/42.jpg"}],
    },
}

_TWEET_SEARCH_PAYLOAD: dict[str, Any] = {
    "data": [
        {
            "id": "1790000000000000002",
            "text": "New open-weights model benchmarks #AI",
            "author_id": "7",
            "attachments": {"media_keys": ["3_1"]},
            "public_metrics": {"like_count": 90, "bookmark_count": 10, "reply_count": 4, "retweet_count": 8},
            "entities": {"hashtags": [{"tag": "AI"}]},
        }
    ],
    "includes": {
        "users": [{"id": "7", "username": "bench_watch"}],
        "media": [{"media_key": "3_1", "type": "photo", "url": "https://pbs.example/media/3_1.jpg"}],
    },
}


def offline_note() -> dict[str, Any]:
    return copy.deepcopy(_NOTE)


def offline_search_notes() -> list[dict[str, Any]]:
    return [copy.deepcopy(_NOTE), copy.deepcopy(_SEARCH_NOTE_2)]


def offline_tweet_payload() -> dict[str, Any]:
    return copy.deepcopy(_TWEET_PAYLOAD)


def offline_tweet_search_payload() -> dict[str, Any]:
    return copy.deepcopy(_TWEET_SEARCH_PAYLOAD)


def _json(status: int, payload: Any) -> httpx.Response:
    return httpx.Response(status, json=payload)


def build_offline_transport(config: AppConfig | None = None) -> httpx.MockTransport:
    """
    Network-free transport for fetch/search smoke checks.

    Serves deterministic fixture payloads at the configured provider paths.
    """
    cfg = config or AppConfig()
    j, t, x = cfg.justone, cfg.tikhub, cfg.x_api
    tweet_prefix = x.tweet_path.split("{id}")[0]

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path

        if path in (j.legacy_detail_path, j.detail_path):
            return _json(200, {"code": 0, "data": {"note_list": [offline_note()]}})
        if path == j.search_path:
            items = [{"model_type": "note", "note": n} for n in offline_search_notes()]
            items.insert(1, {"model_type": "ads", "ads": {"id": "ad"}})
            return _json(200, {"code": 0, "data": {"items": items}})
        if path == j.transfer_path:
            redirect = f"https://www.xiaohongshu.com/discovery/item/{OFFLINE_NOTE_ID}?xsec_token=ABfromredirect"
            return _json(200, {"code": 0, "data": {"redirect_url": redirect}})

        if path == t.detail_path:
            return _json(200, {"code": 200, "data": json.dumps({"data": [{"note_list": [offline_note()]}]})})
        if path == t.search_path:
            items = [{"model_type": "note", "note": n} for n in offline_search_notes()]
            return _json(200, {"code": 200, "data": {"data": {"items": items}}})

        if path == x.tweet_path.replace("{id}", OFFLINE_TWEET_ID):
            return _json(200, offline_tweet_payload())
        if path == x.search_path:
            return _json(200, offline_tweet_search_payload())
        if path.startswith(tweet_prefix):
            return _json(200, {"errors": [{"detail": "Could not find tweet", "title": "Not Found Error"}]})

        return _json(404, {"code": 404, "message": f"offline fixture not found: {path}"})

    return httpx.MockTransport(handler)


class OfflineContentAnalyzer:
    """Deterministic analyzer stub: summary from the text, prompts taken from prompt-looking lines."""

    async def analyze(self, content: NormalizedContent) -> AIAnalysis:
        text = content.raw_text or content.title
        candidates = [line.strip() for line in text.splitlines() if line.strip()]
        return AIAnalysis(
            summary=text[:120],
            usage_scenarios=("offline",),
            core_knowledge=tuple(content.tags[:3]),
            extracted_prompts=tuple(filter_complete_prompts(candidates)),
        )
