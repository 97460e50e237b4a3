from __future__ import annotations

import time
from datetime import datetime, timezone


def getNowIso() -> str:
    """
    Назначение:
        Возвращает текущее время в ISO 8601 с timezone.
    """
    return datetime.now().astimezone().isoformat()


def getUtcNowIso() -> str:
    """Текущее время в UTC ISO 8601 (для sentAt в выгрузке)."""
    return datetime.now(timezone.utc).isoformat()


def nowEpochMs() -> int:
    """Текущее время в epoch-миллисекундах."""
    return int(time.time() * 1000)


def epochMsToIso(value: int) -> str:
    """
    Назначение:
        Рендерит epoch-миллисекунды как ISO 8601 UTC с миллисекундами и суффиксом Z.

    Пример:
        1700000000000 -> 2023-11-14T22:13:20.000Z
    """
    try:
        dt = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return str(value)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def getDurationMs(startMonotonic: float, endMonotonic: float) -> int:
    """
    Назначение:
        Считает длительность в миллисекундах по monotonic timestamps.
    """
    return int((endMonotonic - startMonotonic) * 1000)
