from __future__ import annotations

from .classifier import classify, classify_or_raise
from .config import ProviderSettings, load_config, resolve_runtime_secrets
from .config_schema import AppConfig
from .dedupe import dedupe, dedupe_collections, plan_dedupe
from .errors import (
    AllProvidersExhaustedError,
    ClassificationError,
    ConfigError,
    MalformedResponseError,
    UpstreamError,
)
from .models import Metrics, NormalizedContent, Platform, PlatformRef, SearchQuery, SearchResultBatch
from .normalize import map_to_card, normalize
from .orchestrator import ContentResolver

__all__ = [
    "AllProvidersExhaustedError",
    "AppConfig",
    "ClassificationError",
    "ConfigError",
    "ContentResolver",
    "MalformedResponseError",
    "Metrics",
    "NormalizedContent",
    "Platform",
    "PlatformRef",
    "ProviderSettings",
    "SearchQuery",
    "SearchResultBatch",
    "UpstreamError",
    "classify",
    "classify_or_raise",
    "dedupe",
    "dedupe_collections",
    "load_config",
    "map_to_card",
    "normalize",
    "plan_dedupe",
    "resolve_runtime_secrets",
]
