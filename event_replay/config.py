from __future__ import annotations

import os
import re
from dataclasses import dataclass, fields
from pathlib import Path
from urllib.parse import urlsplit

import yaml

from event_replay.channels.linkedin import DEFAULT_API_VERSION, DEFAULT_LINKEDIN_URL
from event_replay.domain.exceptions import ConfigurationError
from event_replay.domain.run_config import ChannelKind, RunConfiguration

ENV_PREFIX = "EVENT_REPLAY_"

WEBHOOK_RATE_BOUNDS = (1, 25)
LINKEDIN_RATE_BOUNDS = (1, 120)
BATCH_SIZE_BOUNDS = (1, 1000)
API_VERSION_PATTERN = re.compile(r"^\d{4}(0[1-9]|1[0-2])$")


@dataclass(frozen=True)
class Settings:
    # Paths / logging
    log_level: str = "INFO"
    log_dir: str = "./logs"
    report_dir: str = "./reports"
    output_dir: str = "./output"
    report_items_limit: int = 200

    # HTTP
    timeout_seconds: float = 30.0
    retries: int = 0
    retry_backoff_seconds: float = 0.5

    # Timestamp policy
    use_conversion_time: bool = False
    reset_old_timestamps: bool = False

    # Webhook
    webhook_url: str | None = None
    webhook_rate: int = 20

    # LinkedIn
    linkedin_api_url: str = DEFAULT_LINKEDIN_URL
    linkedin_api_version: str = DEFAULT_API_VERSION
    linkedin_access_token: str | None = None
    linkedin_conversion_id: str | None = None
    linkedin_rate: int = 60
    linkedin_batch_size: int = 100


@dataclass(frozen=True)
class LoadedSettings:
    settings: Settings
    sources_used: list[str]


def _read_yaml_config(path: Path) -> dict:
    if not path.exists():
        return {}
    if not path.is_file():
        return {}
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            return {}
        return data


def _env_get(name: str) -> str | None:
    v = os.getenv(name)
    if v is None or v.strip() == "":
        return None
    return v.strip()


def parse_bool(v: str | bool | None) -> bool | None:
    if v is None or isinstance(v, bool):
        return v
    vv = str(v).strip().lower()
    if vv in ("1", "true", "yes", "y"):
        return True
    if vv in ("0", "false", "no", "n"):
        return False
    raise ConfigurationError(f"Invalid boolean value: {v}")


def _coerce(name: str, kind: type, value):
    if value is None:
        return None
    try:
        if kind is bool:
            return parse_bool(value)
        if kind is int:
            return int(value)
        if kind is float:
            return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid value for {name}: {value!r}", field=name) from exc
    return str(value)


_FIELD_TYPES: dict[str, type] = {
    "log_level": str,
    "log_dir": str,
    "report_dir": str,
    "output_dir": str,
    "report_items_limit": int,
    "timeout_seconds": float,
    "retries": int,
    "retry_backoff_seconds": float,
    "use_conversion_time": bool,
    "reset_old_timestamps": bool,
    "webhook_url": str,
    "webhook_rate": int,
    "linkedin_api_url": str,
    "linkedin_api_version": str,
    "linkedin_access_token": str,
    "linkedin_conversion_id": str,
    "linkedin_rate": int,
    "linkedin_batch_size": int,
}


def load_settings(
    config_path: str | None,
    cli_overrides: dict,
) -> LoadedSettings:
    """
    Priority: CLI > ENV > config > defaults
    """
    sources: list[str] = []
    defaults = Settings()

    # 1) config file
    cfg: dict = {}
    if config_path:
        cfg = _read_yaml_config(Path(config_path))
        if cfg:
            sources.append("config")

    # 2) env
    env = {name: _env_get(f"{ENV_PREFIX}{name.upper()}") for name in _FIELD_TYPES}
    if any(v is not None for v in env.values()):
        sources.append("env")

    merged = {f.name: getattr(defaults, f.name) for f in fields(Settings)}
    for name, kind in _FIELD_TYPES.items():
        if cfg.get(name) is not None:
            merged[name] = _coerce(name, kind, cfg[name])
    for name, kind in _FIELD_TYPES.items():
        if env[name] is not None:
            merged[name] = _coerce(name, kind, env[name])

    # 3) apply CLI overrides (only those explicitly passed)
    if any(v is not None for v in cli_overrides.values()):
        sources.append("cli")
    for k, v in cli_overrides.items():
        if v is None:
            continue
        if k not in _FIELD_TYPES:
            raise ConfigurationError(f"Unknown setting: {k}", field=k)
        merged[k] = _coerce(k, _FIELD_TYPES[k], v)

    return LoadedSettings(settings=Settings(**merged), sources_used=sources)


def read_secret_file(path: str) -> str:
    """Читает секрет (токен) из файла: первая непустая строка."""
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(f"Cannot read secret file {path}: {exc}", field="linkedin_access_token") from exc
    for line in text.splitlines():
        if line.strip():
            return line.strip()
    raise ConfigurationError(f"Secret file is empty: {path}", field="linkedin_access_token")


def _require_url(value: str | None, field: str) -> str:
    if not value or not value.strip():
        raise ConfigurationError(f"{field} is required", field=field)
    parts = urlsplit(value.strip())
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ConfigurationError(f"{field} must be an http(s) URL: {value}", field=field)
    return value.strip()


def _require_range(value: int, bounds: tuple[int, int], field: str) -> int:
    low, high = bounds
    if not low <= value <= high:
        raise ConfigurationError(f"{field} must be between {low} and {high}, got {value}", field=field)
    return value


def build_run_configuration(
    channel: str | ChannelKind,
    settings: Settings,
    *,
    offline: bool = False,
) -> RunConfiguration:
    """
    Назначение:
        Собирает неизменяемую RunConfiguration и проверяет её до обработки записей.

    Контракт:
        - webhook: URL обязателен, лимит 1..25 вызовов/мин.
        - linkedin: лимит 1..120 вызовов/мин, пакет 1..1000 событий, версия API YYYYMM,
          conversion id обязателен.
        - offline (сухой прогон без сети): URL webhook и токен не требуются.
        - Любое нарушение -> ConfigurationError.
    """
    try:
        kind = ChannelKind(channel)
    except ValueError as exc:
        raise ConfigurationError(f"Unsupported channel: {channel}", field="channel") from exc

    if settings.timeout_seconds <= 0:
        raise ConfigurationError("timeout_seconds must be positive", field="timeout_seconds")

    if kind == ChannelKind.WEBHOOK:
        webhook_url = settings.webhook_url or ""
        if not offline or webhook_url:
            webhook_url = _require_url(webhook_url, "webhook_url")
        return RunConfiguration(
            channel=kind,
            endpoint_url=webhook_url,
            rate_per_minute=_require_range(settings.webhook_rate, WEBHOOK_RATE_BOUNDS, "webhook_rate"),
            batch_size=1,
            use_conversion_time=settings.use_conversion_time,
            reset_old_timestamps=settings.reset_old_timestamps,
            timeout_seconds=settings.timeout_seconds,
        )

    if not API_VERSION_PATTERN.match(settings.linkedin_api_version or ""):
        raise ConfigurationError(
            f"linkedin_api_version must be in YYYYMM format, got {settings.linkedin_api_version!r}",
            field="linkedin_api_version",
        )
    if not offline and not settings.linkedin_access_token:
        raise ConfigurationError("LinkedIn access token is required", field="linkedin_access_token")
    conversion_id = (settings.linkedin_conversion_id or "").strip()
    if not conversion_id:
        raise ConfigurationError("LinkedIn conversion id is required", field="linkedin_conversion_id")

    return RunConfiguration(
        channel=kind,
        endpoint_url=_require_url(settings.linkedin_api_url, "linkedin_api_url"),
        rate_per_minute=_require_range(settings.linkedin_rate, LINKEDIN_RATE_BOUNDS, "linkedin_rate"),
        batch_size=_require_range(settings.linkedin_batch_size, BATCH_SIZE_BOUNDS, "linkedin_batch_size"),
        use_conversion_time=settings.use_conversion_time,
        reset_old_timestamps=settings.reset_old_timestamps,
        conversion_id=conversion_id,
        timeout_seconds=settings.timeout_seconds,
    )
