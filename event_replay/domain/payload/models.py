from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class BuiltPayload:
    """
    Назначение:
        Результат сборки payload для одной записи.

    Поля:
        body: JSON-структура, уходящая в канал.
        time_source: происхождение метки времени (current/record/reset/fallback) или None.
        warnings: предупреждения сборки (например, защитный fallback метки времени).
        notes: информационные сообщения (замена старой метки).
    """

    body: dict[str, Any]
    time_source: str | None = None
    warnings: tuple[str, ...] = field(default=())
    notes: tuple[str, ...] = field(default=())
