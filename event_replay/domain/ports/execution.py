from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, Tuple


@dataclass
class RequestSpec:
    """
    Назначение/ответственность:
        Описывает внешний вызов канала без привязки к HTTP-клиенту.
    Инварианты/гарантии:
        - method хранится в верхнем регистре.
        - url задан явно (абсолютный или относительно base_url клиента).
        - expected_statuses непустой.
    """

    method: str
    url: str
    json: Any | None = None
    headers: dict[str, str] | None = None
    expected_statuses: Tuple[int, ...] = field(default_factory=tuple)
    timeout_seconds: float | None = None

    def __post_init__(self) -> None:
        self.method = self.method.upper()
        if not self.expected_statuses:
            raise ValueError("expected_statuses must not be empty")

    @classmethod
    def post(
        cls,
        url: str,
        json: Any | None = None,
        *,
        headers: dict[str, str] | None = None,
        expected_statuses: Tuple[int, ...] = tuple(range(200, 300)),
        timeout_seconds: float | None = None,
    ) -> "RequestSpec":
        return cls(
            method="POST",
            url=url,
            json=json,
            headers=headers,
            expected_statuses=tuple(expected_statuses),
            timeout_seconds=timeout_seconds,
        )


@dataclass
class ExecutionResult:
    """
    Назначение/ответственность:
        Нормализованный результат выполнения RequestSpec.
    Инварианты/гарантии:
        - ok отражает попадание статуса в expected_statuses.
        - status_code=None означает сетевую ошибку (ответа не было).
    """

    ok: bool
    status_code: int | None = None
    error_code: str | None = None
    error_message: str | None = None
    attempts: int = 1
    duration_ms: int | None = None
    response_json: Any | None = None


class RequestExecutorProtocol(Protocol):
    """
    Назначение/ответственность:
        Порт выполнения внешних запросов по RequestSpec.
    Ограничения:
        Синхронное выполнение, одна спецификация за вызов, без исключений по транспорту.
    """

    def execute(self, request: RequestSpec) -> ExecutionResult: ...
