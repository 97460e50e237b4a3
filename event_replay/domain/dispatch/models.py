from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

NETWORK_ERROR_KEY = "NETWORK_ERROR"


class OutcomeStatus(str, Enum):
    SENT = "SENT"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


@dataclass(frozen=True)
class DispatchUnit:
    """
    Назначение:
        Один исходящий payload плюс ссылка на исходную запись.

    Поля:
        record_index: индекс записи во входной последовательности.
        batch_index: номер вызова первого прохода, в который попал unit.
        source: поля исходной записи (для выгрузки отправленных событий).
    """

    record_index: int
    line_no: int
    batch_index: int
    email: str
    payload: Mapping[str, Any]
    source: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class DispatchOutcome:
    """
    Назначение:
        Итог одной попытки доставки unit или его пропуска.

    Поля:
        status: SENT | FAILED | SKIPPED.
        status_code: HTTP-статус (для элемента пакета: статус элемента); None для сети/пропуска.
        response_id: id, возвращённый каналом для SENT.
        message: текст ошибки (FAILED) или причина (SKIPPED).
        attempt: 1 для первого прохода, 2 для повтора.
        call_label: метка вызова ("call 3", "retry 1"), None для SKIPPED.
    """

    record_index: int
    status: OutcomeStatus
    unit: DispatchUnit | None = None
    status_code: int | None = None
    response_id: str | None = None
    message: str | None = None
    error_code: str | None = None
    attempt: int = 1
    call_label: str | None = None
    meta: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def sent(cls, unit: DispatchUnit, status_code: int | None, response_id: str | None = None, **kwargs) -> "DispatchOutcome":
        return cls(
            record_index=unit.record_index,
            status=OutcomeStatus.SENT,
            unit=unit,
            status_code=status_code,
            response_id=response_id,
            **kwargs,
        )

    @classmethod
    def failed(
        cls,
        unit: DispatchUnit,
        status_code: int | None,
        message: str,
        error_code: str | None = None,
        **kwargs,
    ) -> "DispatchOutcome":
        return cls(
            record_index=unit.record_index,
            status=OutcomeStatus.FAILED,
            unit=unit,
            status_code=status_code,
            message=message,
            error_code=error_code,
            **kwargs,
        )

    @classmethod
    def skipped(
        cls,
        record_index: int,
        reason: str,
        unit: DispatchUnit | None = None,
        code: str | None = None,
    ) -> "DispatchOutcome":
        return cls(record_index=record_index, status=OutcomeStatus.SKIPPED, unit=unit, message=reason, error_code=code)

    @property
    def status_key(self) -> str:
        """Ключ для гистограммы и группировки ошибок: HTTP-статус или NETWORK_ERROR."""
        return str(self.status_code) if self.status_code is not None else NETWORK_ERROR_KEY


class DeliveryMode(str, Enum):
    """SINGLE: один unit на вызов, фиксированная пауза. BATCHED: до batch_size unit на вызов."""

    SINGLE = "single"
    BATCHED = "batched"


CANCELLED_CODE = "CANCELLED"
CANCELLED_REASON = "run cancelled before dispatch"
