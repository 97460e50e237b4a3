from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ChannelKind(str, Enum):
    WEBHOOK = "webhook"
    LINKEDIN = "linkedin"


@dataclass(frozen=True)
class RunConfiguration:
    """
    Назначение:
        Неизменяемые параметры одного запуска, фиксируются до начала отправки.

    Поля:
        channel: канал доставки.
        endpoint_url: адрес webhook или LinkedIn conversionEvents.
        rate_per_minute: лимит HTTP-вызовов в минуту.
        batch_size: событий в одном вызове (для webhook всегда 1).
        use_conversion_time / reset_old_timestamps: политика исторических меток времени.
        conversion_id: идентификатор конверсии для URN (только LinkedIn).
        timeout_seconds: таймаут одного HTTP-вызова.
    """

    channel: ChannelKind
    endpoint_url: str
    rate_per_minute: int
    batch_size: int = 1
    use_conversion_time: bool = False
    reset_old_timestamps: bool = False
    conversion_id: str | None = None
    timeout_seconds: float = 30.0

    @property
    def interval_seconds(self) -> float:
        return 60.0 / self.rate_per_minute
