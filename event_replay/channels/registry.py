from __future__ import annotations

from event_replay.channels.base import ChannelSpec
from event_replay.channels.linkedin import LinkedInCapiChannel
from event_replay.channels.webhook import WebhookChannel
from event_replay.domain.exceptions import ConfigurationError
from event_replay.domain.run_config import ChannelKind, RunConfiguration


def build_channel(
    config: RunConfiguration,
    *,
    access_token: str = "",
    api_version: str | None = None,
) -> ChannelSpec:
    """
    Назначение:
        Собирает стратегию канала под RunConfiguration.
    """
    if config.channel == ChannelKind.WEBHOOK:
        return WebhookChannel(config.endpoint_url, timeout_seconds=config.timeout_seconds)
    if config.channel == ChannelKind.LINKEDIN:
        kwargs = {"url": config.endpoint_url, "timeout_seconds": config.timeout_seconds}
        if api_version:
            kwargs["api_version"] = api_version
        return LinkedInCapiChannel(access_token, **kwargs)
    raise ConfigurationError(f"Unsupported channel: {config.channel}", field="channel")
