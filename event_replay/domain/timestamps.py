from __future__ import annotations

from dataclasses import dataclass

from event_replay.common.time import epochMsToIso

DAY_MS = 24 * 60 * 60 * 1000
RECENCY_WINDOW_DAYS = 90
RECENCY_WINDOW_MS = RECENCY_WINDOW_DAYS * DAY_MS


def parse_epoch_ms(value: str | None) -> int | None:
    """
    Назначение:
        Разбирает conversionTime как целое число миллисекунд.
        Пустое или нечисловое значение -> None.
    """
    if value is None:
        return None
    text = value.strip()
    if not text:
        return None
    try:
        return int(text)
    except ValueError:
        return None


def is_within_window(timestamp_ms: int, now_ms: int) -> bool:
    """Окно включительное с обеих сторон: [now - 90 дней, now]."""
    return now_ms - RECENCY_WINDOW_MS <= timestamp_ms <= now_ms


def age_days(timestamp_ms: int, now_ms: int) -> int:
    return (now_ms - timestamp_ms) // DAY_MS


def days_ahead(timestamp_ms: int, now_ms: int) -> int:
    """Сколько суток (с округлением вверх) метка опережает now."""
    return -((now_ms - timestamp_ms) // DAY_MS)


def describe_offset(timestamp_ms: int, now_ms: int) -> str:
    if timestamp_ms > now_ms:
        return f"{days_ahead(timestamp_ms, now_ms)} days in the future"
    return f"{age_days(timestamp_ms, now_ms)} days ago"


class TimeSource:
    CURRENT = "current"
    RECORD = "record"
    RESET = "reset"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class TimestampResolution:
    """
    Назначение:
        Итоговая метка времени события и её происхождение.
    """

    value: int
    source: str
    warning: str | None = None
    note: str | None = None


def resolve_conversion_time(
    raw_value: str | None,
    *,
    use_conversion_time: bool,
    reset_old_timestamps: bool,
    now_ms: int,
) -> TimestampResolution:
    """
    Назначение:
        Общая политика выбора conversionHappenedAt для обоих каналов.

    Алгоритм:
        - use_conversion_time выключен или значение пустое/нечисловое -> now.
        - значение в окне 90 дней -> значение из записи.
        - вне окна и reset_old_timestamps -> now (замена старой метки).
        - иначе -> now с предупреждением; валидатор такие записи уже отклоняет.
    """
    if not use_conversion_time:
        return TimestampResolution(value=now_ms, source=TimeSource.CURRENT)
    parsed = parse_epoch_ms(raw_value)
    if parsed is None:
        return TimestampResolution(value=now_ms, source=TimeSource.CURRENT)
    if is_within_window(parsed, now_ms):
        return TimestampResolution(value=parsed, source=TimeSource.RECORD)
    offset = describe_offset(parsed, now_ms)
    if reset_old_timestamps:
        return TimestampResolution(
            value=now_ms,
            source=TimeSource.RESET,
            note=f"reset old timestamp {epochMsToIso(parsed)} ({offset}) to current time",
        )
    return TimestampResolution(
        value=now_ms,
        source=TimeSource.FALLBACK,
        warning=f"conversionTime {epochMsToIso(parsed)} ({offset}) is outside the "
        f"{RECENCY_WINDOW_DAYS}-day window; using current timestamp",
    )
