"""
Configuration loader for the order notifier.
Reads settings from a YAML file with environment variable substitution,
then applies the plain environment variables the deployment already uses
(EVOLUTION_API_URL, REDIS_HOST, …) on top.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional
from urllib.parse import quote

import yaml


@dataclass
class GatewayConfig:
    base_url: str = ""
    api_key: str = ""
    timeout_seconds: float = 15.0          # bounds every readiness/send call
    connect_timeout_seconds: float = 5.0


@dataclass
class QueueConfig:
    backend: str = "memory"             # "memory" for dev, "redis" for production
    redis_url: str = "redis://localhost:6379"
    queue_name: str = "message-processing"
    consumer_group: str = "notification-workers"
    lock_duration_ms: int = 60000       # lease before an in-flight job counts as stalled
    stalled_interval_ms: int = 30000    # how often stalled jobs are looked for
    max_stalled_count: int = 2          # stalls tolerated before dead-lettering
    delayed_promote_interval: int = 5   # seconds between delayed-queue scans
    retry_backoff_base: int = 5         # base seconds for exponential retry backoff
    max_attempts: int = 5               # default for jobs published by this process
    completed_retention: int = 1000
    shutdown_timeout: float = 30.0      # seconds to let the in-flight job finish


@dataclass
class LoggingConfig:
    level: str = "INFO"
    json: bool = True


@dataclass
class Settings:
    app_name: str = "order-notifier"
    debug: bool = False
    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


_settings: Optional[Settings] = None


def _substitute_env_vars(value: str, env: dict[str, str]) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""
    pattern = re.compile(r'\$\{(\w+)\}')
    def replacer(match):
        var_name = match.group(1)
        return env.get(var_name, match.group(0))
    return pattern.sub(replacer, value)


def _process_values(obj: Any, env: dict[str, str]) -> Any:
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj, env)
    elif isinstance(obj, dict):
        return {k: _process_values(v, env) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_process_values(v, env) for v in obj]
    return obj


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _build(cls, data: dict[str, Any], defaults):
    """Instantiate a config dataclass, coercing values to the default's type."""
    kwargs = {}
    for name in cls.__dataclass_fields__:
        if name not in data or data[name] in (None, ""):
            continue
        default = getattr(defaults, name)
        value = data[name]
        if isinstance(default, bool):
            value = _as_bool(value)
        elif isinstance(default, int):
            value = int(value)
        elif isinstance(default, float):
            value = float(value)
        kwargs[name] = value
    return cls(**{**{n: getattr(defaults, n) for n in cls.__dataclass_fields__}, **kwargs})


def _redis_url_from_env(env: dict[str, str]) -> Optional[str]:
    host = env.get("REDIS_HOST")
    if not host:
        return None
    port = env.get("REDIS_PORT", "6379")
    password = env.get("REDIS_PASSWORD")
    auth = f":{quote(password, safe='')}@" if password else ""
    return f"redis://{auth}{host}:{port}"


def _apply_env_overrides(settings: Settings, env: dict[str, str]) -> None:
    if env.get("EVOLUTION_API_URL"):
        settings.gateway.base_url = env["EVOLUTION_API_URL"]
    if env.get("EVOLUTION_API_KEY"):
        settings.gateway.api_key = env["EVOLUTION_API_KEY"]

    redis_url = env.get("REDIS_URL") or _redis_url_from_env(env)
    if redis_url:
        settings.queue.redis_url = redis_url
        settings.queue.backend = "redis"
    if env.get("QUEUE_BACKEND"):
        settings.queue.backend = env["QUEUE_BACKEND"]

    if env.get("LOG_LEVEL"):
        settings.logging.level = env["LOG_LEVEL"].upper()
    if env.get("LOG_JSON"):
        settings.logging.json = _as_bool(env["LOG_JSON"])


def load_settings(config_path: str = None, env: dict[str, str] = None) -> Settings:
    """Load settings from YAML file, then apply environment overrides."""
    global _settings
    env = dict(os.environ) if env is None else env

    if config_path is None:
        config_path = env.get(
            "NOTIFIER_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    settings = Settings()

    if Path(config_path).exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        raw = _process_values(raw, env)

        settings.app_name = raw.get("app_name", settings.app_name)
        settings.debug = _as_bool(raw.get("debug", settings.debug))

        if "gateway" in raw:
            settings.gateway = _build(GatewayConfig, raw["gateway"] or {}, settings.gateway)
        if "queue" in raw:
            settings.queue = _build(QueueConfig, raw["queue"] or {}, settings.queue)
        if "logging" in raw:
            settings.logging = _build(LoggingConfig, raw["logging"] or {}, settings.logging)

    _apply_env_overrides(settings, env)

    _settings = settings
    return settings


def get_settings() -> Settings:
    """Return cached settings or load from default path."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
