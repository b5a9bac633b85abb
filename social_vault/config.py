from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

import yaml
from pydantic import ValidationError

from .config_schema import AppConfig, ProviderPreference
from .errors import ConfigError


@dataclass(frozen=True)
class RuntimeSecrets:
    justone_token: str | None = None
    tikhub_token: str | None = None
    x_bearer_token: str | None = None
    openai_api_key: str | None = None


@dataclass(frozen=True)
class ProviderSettings:
    """
    Explicit provider selection threaded into the orchestrator at construction time.

    Nothing here is read from the environment after it has been built.
    """

    xhs_preference: ProviderPreference = "auto"
    legacy_detail_enabled: bool = True
    legacy_detail_attempts: int = 10
    legacy_detail_delay_seconds: float = 0.25

    @classmethod
    def from_config(cls, config: AppConfig) -> "ProviderSettings":
        return cls(
            xhs_preference=config.xiaohongshu.preferred_provider,
            legacy_detail_enabled=config.legacy_detail.enabled,
            legacy_detail_attempts=config.legacy_detail.max_attempts,
            legacy_detail_delay_seconds=config.legacy_detail.delay_seconds,
        )


def load_config(path: str | Path | None) -> AppConfig:
    """
    Load a YAML config file and validate it into a typed AppConfig.

    A None path yields the built-in defaults. Raises ConfigError with a readable
    validation message on failure.
    """
    if path is None:
        return AppConfig()

    p = Path(path)

    if not p.exists():
        raise ConfigError(f"Config file not found: {p}")

    try:
        raw_text = p.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Failed to read config file: {p}") from e

    try:
        data = yaml.safe_load(raw_text)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML in {p}: {e}") from e

    if data is None:
        data = {}

    if not isinstance(data, dict):
        raise ConfigError(f"Top-level YAML in {p} must be a mapping/object")

    try:
        return AppConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(_format_pydantic_errors(e, p)) from e


def _env_value(env: Mapping[str, str], name: str) -> str | None:
    value = (env.get(name) or "").strip()
    return value or None


def resolve_runtime_secrets(
    config: AppConfig, *, environ: Mapping[str, str] | None = None
) -> RuntimeSecrets:
    """
    Read provider credentials from the environment.

    Every credential is optional here; absence is judged per platform by the
    orchestrator, or up front with require_any_provider().
    """
    env = os.environ if environ is None else environ

    return RuntimeSecrets(
        justone_token=_env_value(env, config.justone.token_env),
        tikhub_token=_env_value(env, config.tikhub.token_env),
        x_bearer_token=_env_value(env, config.x_api.bearer_token_env),
        openai_api_key=_env_value(env, config.openai.api_key_env),
    )


def require_any_provider(config: AppConfig, secrets: RuntimeSecrets) -> None:
    if secrets.justone_token or secrets.tikhub_token or secrets.x_bearer_token:
        return
    joined = ", ".join(
        [config.justone.token_env, config.tikhub.token_env, config.x_api.bearer_token_env]
    )
    raise ConfigError(f"No upstream API tokens configured; set one of: {joined}")


def _format_pydantic_errors(err: ValidationError, path: Path) -> str:
    lines: list[str] = [f"Invalid configuration in {path}:"]
    for item in err.errors():
        loc = ".".join(str(part) for part in item.get("loc", [])) or "<root>"
        msg = item.get("msg", "invalid value")
        lines.append(f"- {loc}: {msg}")
    return "\n".join(lines)
