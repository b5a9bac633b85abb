from __future__ import annotations

import re
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

_ENV_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _validate_env_var_name(value: str) -> str:
    name = (value or "").strip()
    if not _ENV_NAME_RE.fullmatch(name):
        raise ValueError("must be a valid environment variable name")
    return name


def _validate_path(value: str) -> str:
    path = (value or "").strip()
    if not path.startswith("/"):
        raise ValueError("must start with '/'")
    return path


def _validate_base_url(value: str) -> str:
    url = (value or "").strip().rstrip("/")
    if not url.startswith(("http://", "https://")):
        raise ValueError("must be an http(s) URL")
    return url


PositiveInt = Annotated[int, Field(ge=1)]
NonNegativeFloat = Annotated[float, Field(ge=0.0)]

ProviderPreference = Literal["auto", "justone", "tikhub"]


class _ProviderConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    base_url: str
    retry_attempts: PositiveInt = 3
    retry_delay_seconds: NonNegativeFloat = 0.5

    @field_validator("base_url")
    @classmethod
    def _base_url_must_be_http(cls, v: str) -> str:
        return _validate_base_url(v)


class JustOneConfig(_ProviderConfig):
    token_env: str = "JUSTONEAPI_TOKEN"
    base_url: str = "https://api.justoneapi.com"
    legacy_detail_path: str = "/api/xiaohongshu/get-note-detail/v1"
    detail_path: str = "/api/xiaohongshu/get-note-detail/v7"
    search_path: str = "/api/xiaohongshu/search-note/v2"
    transfer_path: str = "/api/xiaohongshu/share-url-transfer/v1"

    @field_validator("token_env")
    @classmethod
    def _token_env_must_be_valid(cls, v: str) -> str:
        return _validate_env_var_name(v)

    @field_validator("legacy_detail_path", "detail_path", "search_path", "transfer_path")
    @classmethod
    def _paths_must_be_absolute(cls, v: str) -> str:
        return _validate_path(v)


class LegacyDetailConfig(BaseModel):
    """Bounded retry for the richer but flaky JustOne detail endpoint."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    enabled: bool = True
    max_attempts: PositiveInt = 10
    delay_seconds: NonNegativeFloat = 0.25


class TikHubConfig(_ProviderConfig):
    token_env: str = "TIKHUB_API_TOKEN"
    base_url: str = "https://api.tikhub.io"
    detail_path: str = "/api/v1/xiaohongshu/app/get_note_info"
    search_path: str = "/api/v1/xiaohongshu/app/search_notes"

    @field_validator("token_env")
    @classmethod
    def _token_env_must_be_valid(cls, v: str) -> str:
        return _validate_env_var_name(v)

    @field_validator("detail_path", "search_path")
    @classmethod
    def _paths_must_be_absolute(cls, v: str) -> str:
        return _validate_path(v)


class XApiConfig(_ProviderConfig):
    bearer_token_env: str = "X_API_BEARER_TOKEN"
    base_url: str = "https://api.x.com"
    tweet_path: str = "/2/tweets/{id}"
    search_path: str = "/2/tweets/search/recent"
    retry_attempts: PositiveInt = 1

    @field_validator("bearer_token_env")
    @classmethod
    def _token_env_must_be_valid(cls, v: str) -> str:
        return _validate_env_var_name(v)

    @field_validator("search_path")
    @classmethod
    def _search_path_must_be_absolute(cls, v: str) -> str:
        return _validate_path(v)

    @field_validator("tweet_path")
    @classmethod
    def _tweet_path_needs_id(cls, v: str) -> str:
        path = _validate_path(v)
        if "{id}" not in path:
            raise ValueError("must contain the {id} placeholder")
        return path


class XiaohongshuConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    preferred_provider: ProviderPreference = "auto"


class HttpConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    timeout_seconds: float = Field(8.0, gt=0.0)


class OpenAIConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    api_key_env: str = "OPENAI_API_KEY"
    analysis_model: str = "gpt-5-mini"
    cover_model: str = "gpt-image-1"
    cover_size: str = "1024x1024"
    max_output_tokens: PositiveInt = 1200
    retry_attempts: PositiveInt = 2
    retry_delay_seconds: NonNegativeFloat = 1.0

    @field_validator("api_key_env")
    @classmethod
    def _api_key_env_must_be_valid(cls, v: str) -> str:
        return _validate_env_var_name(v)


class SearchConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    default_limit: PositiveInt = 10
    default_sort: Literal["general", "popularity_descending", "time_descending"] = "general"
    min_interaction: int = Field(0, ge=0)


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    justone: JustOneConfig = Field(default_factory=JustOneConfig)
    legacy_detail: LegacyDetailConfig = Field(default_factory=LegacyDetailConfig)
    tikhub: TikHubConfig = Field(default_factory=TikHubConfig)
    x_api: XApiConfig = Field(default_factory=XApiConfig)
    xiaohongshu: XiaohongshuConfig = Field(default_factory=XiaohongshuConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    openai: OpenAIConfig = Field(default_factory=OpenAIConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)

    @model_validator(mode="after")
    def _token_envs_must_differ(self) -> "AppConfig":
        names = [self.justone.token_env, self.tikhub.token_env, self.x_api.bearer_token_env]
        if len(set(names)) != len(names):
            raise ValueError("provider token environment variables must be distinct")
        return self
