"""Relay configuration.

Configuration is read once at startup from a JSON file and frozen into
dataclasses. The resulting :class:`RelayConfig` is passed explicitly to the
components that need it; nothing looks it up globally.

Usage:
    from feedrelay.config import load_config

    config = load_config(Path("config.json"))
    limiter = RateLimiter(config.feeds)
"""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Mapping

DEFAULT_CONFIG_PATH = Path("config.json")
CONFIG_PATH_ENV = "FEEDRELAY_CONFIG"
TOKEN_ENV = "FEEDRELAY_BOT_TOKEN"

_LOG_LEVELS = ("debug", "info", "warning", "error", "critical")

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:78.0) "
    "Gecko/20100101 Firefox/78.0"
)


class ConfigError(ValueError):
    """Raised when the configuration file is unreadable or invalid."""


@dataclass(frozen=True)
class LogSettings:
    """Logging behaviour.

    Attributes:
        level: Root logging level name.
        unfiltered: Log articles that were blocked by filters.
        rate_limit_hits: Log rate-limited articles at info instead of debug.
    """

    level: str = "info"
    unfiltered: bool = True
    rate_limit_hits: bool = True


@dataclass(frozen=True)
class BotSettings:
    token: str = ""
    run_schedules_on_start: bool = True
    user_agent: str = DEFAULT_USER_AGENT
    feed_request_timeout_ms: int = 15000


@dataclass(frozen=True)
class DatabaseSettings:
    """Delivery record persistence.

    An empty ``records_path`` disables recording entirely.
    """

    records_path: str = ""
    delivery_records_expire: int = 2


@dataclass(frozen=True)
class FeedSettings:
    """Feed refresh and delivery throughput settings.

    Attributes:
        refresh_rate_minutes: Default schedule interval. Also the length of
            the window used by the global and per-feed quotas.
        article_dequeue_rate: Destination queue drain rate in items/second.
        article_rate_limit: Global cap per window (0 = unlimited).
        article_daily_channel_limit: Per-destination cap per UTC day
            (0 = unlimited).
        article_feed_limit: Per-feed cap per window (0 = unlimited).
        send_first_cycle: Deliver articles found on a feed's first refresh.
    """

    refresh_rate_minutes: float = 10
    article_dequeue_rate: float = 1
    article_rate_limit: int = 0
    article_daily_channel_limit: int = 0
    article_feed_limit: int = 0
    send_first_cycle: bool = True


@dataclass(frozen=True)
class AdvancedSettings:
    batch_size: int = 400
    parallel_batches: int = 1
    parallel_runs: int = 1


@dataclass(frozen=True)
class HttpGatewaySettings:
    """Direct-send mode. When enabled, articles skip the destination queues."""

    enabled: bool = False
    base_url: str = "https://discord.com/api"


@dataclass(frozen=True)
class RelayConfig:
    log: LogSettings = field(default_factory=LogSettings)
    bot: BotSettings = field(default_factory=BotSettings)
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    feeds: FeedSettings = field(default_factory=FeedSettings)
    advanced: AdvancedSettings = field(default_factory=AdvancedSettings)
    http_gateway: HttpGatewaySettings = field(default_factory=HttpGatewaySettings)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for display. The bot token is masked."""
        data = asdict(self)
        if data["bot"]["token"]:
            data["bot"]["token"] = "***"
        return data


# (section, json key, attribute, expected type, minimum)
_FIELDS: tuple[tuple[str, str, str, type, float | None], ...] = (
    ("log", "level", "level", str, None),
    ("log", "unfiltered", "unfiltered", bool, None),
    ("log", "rateLimitHits", "rate_limit_hits", bool, None),
    ("bot", "token", "token", str, None),
    ("bot", "runSchedulesOnStart", "run_schedules_on_start", bool, None),
    ("bot", "userAgent", "user_agent", str, None),
    ("bot", "feedRequestTimeoutMs", "feed_request_timeout_ms", int, 1),
    ("database", "recordsPath", "records_path", str, None),
    ("database", "deliveryRecordsExpire", "delivery_records_expire", int, 0),
    ("feeds", "refreshRateMinutes", "refresh_rate_minutes", float, 0),
    ("feeds", "articleDequeueRate", "article_dequeue_rate", float, 0),
    ("feeds", "articleRateLimit", "article_rate_limit", int, 0),
    ("feeds", "articleDailyChannelLimit", "article_daily_channel_limit", int, 0),
    ("feeds", "articleFeedLimit", "article_feed_limit", int, 0),
    ("feeds", "sendFirstCycle", "send_first_cycle", bool, None),
    ("advanced", "batchSize", "batch_size", int, 1),
    ("advanced", "parallelBatches", "parallel_batches", int, 1),
    ("advanced", "parallelRuns", "parallel_runs", int, 1),
)

_STRICTLY_POSITIVE = {"refresh_rate_minutes", "article_dequeue_rate"}

_SECTION_TYPES = {
    "log": LogSettings,
    "bot": BotSettings,
    "database": DatabaseSettings,
    "feeds": FeedSettings,
    "advanced": AdvancedSettings,
}


def _check_value(path: str, value: Any, expected: type, minimum: float | None, strict: bool) -> str | None:
    # bool is a subclass of int, so it has to be rejected explicitly
    if expected is bool:
        if not isinstance(value, bool):
            return f'"{path}" must be a boolean'
        return None
    if expected in (int, float):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return f'"{path}" must be a number'
        if expected is int and not float(value).is_integer():
            return f'"{path}" must be an integer'
        if minimum is not None:
            if strict and value <= minimum:
                return f'"{path}" must be greater than {minimum:g}'
            if not strict and value < minimum:
                return f'"{path}" must be greater than or equal to {minimum:g}'
        return None
    if not isinstance(value, expected):
        return f'"{path}" must be a string'
    return None


def parse_config(data: Mapping[str, Any]) -> RelayConfig:
    """Build a :class:`RelayConfig` from raw JSON data.

    All problems are collected and reported together.

    Args:
        data: Parsed JSON object. Missing keys fall back to defaults.

    Returns:
        The frozen configuration.

    Raises:
        ConfigError: If any value has the wrong type or is out of range.
    """
    if not isinstance(data, Mapping):
        raise ConfigError("Config validation failed\n\nroot must be a JSON object")

    errors: list[str] = []
    values: dict[str, dict[str, Any]] = {section: {} for section in _SECTION_TYPES}

    for section, key, attr, expected, minimum in _FIELDS:
        raw_section = data.get(section, {})
        if not isinstance(raw_section, Mapping):
            message = f'"{section}" must be an object'
            if message not in errors:
                errors.append(message)
            continue
        if key not in raw_section:
            continue
        value = raw_section[key]
        problem = _check_value(
            f"{section}.{key}", value, expected, minimum, attr in _STRICTLY_POSITIVE
        )
        if problem:
            errors.append(problem)
            continue
        if expected is int:
            value = int(value)
        elif expected is float:
            value = float(value)
        values[section][attr] = value

    level = values["log"].get("level")
    if level is not None and level.lower() not in _LOG_LEVELS:
        errors.append(f'"log.level" must be one of {", ".join(_LOG_LEVELS)}')

    gateway = HttpGatewaySettings()
    apis = data.get("apis", {})
    raw_gateway = apis.get("httpGateway", {}) if isinstance(apis, Mapping) else None
    if not isinstance(raw_gateway, Mapping):
        errors.append('"apis.httpGateway" must be an object')
    else:
        enabled = raw_gateway.get("enabled", gateway.enabled)
        base_url = raw_gateway.get("baseUrl", gateway.base_url)
        if not isinstance(enabled, bool):
            errors.append('"apis.httpGateway.enabled" must be a boolean')
        elif not isinstance(base_url, str) or not base_url.startswith(("http://", "https://")):
            errors.append('"apis.httpGateway.baseUrl" must be an http(s) URL')
        else:
            gateway = HttpGatewaySettings(enabled=enabled, base_url=base_url.rstrip("/"))

    if errors:
        raise ConfigError("Config validation failed\n\n" + "\n".join(errors))

    token = os.environ.get(TOKEN_ENV)
    if token:
        values["bot"]["token"] = token

    return RelayConfig(
        log=LogSettings(**values["log"]),
        bot=BotSettings(**values["bot"]),
        database=DatabaseSettings(**values["database"]),
        feeds=FeedSettings(**values["feeds"]),
        advanced=AdvancedSettings(**values["advanced"]),
        http_gateway=gateway,
    )


def resolve_config_path(path: Path | None = None) -> Path:
    """Pick the config path: explicit argument, then environment, then default."""
    if path is not None:
        return path
    env_path = os.environ.get(CONFIG_PATH_ENV)
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_PATH


def load_config(path: Path | None = None) -> RelayConfig:
    """Load and validate the configuration file.

    A missing file yields the defaults, matching a fresh install.

    Raises:
        ConfigError: If the file cannot be parsed or fails validation.
    """
    config_path = resolve_config_path(path)
    if not config_path.exists():
        return parse_config({})
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(f"Failed to read config file {config_path}: {exc}") from exc
    return parse_config(data)
