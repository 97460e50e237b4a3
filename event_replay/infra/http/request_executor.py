from __future__ import annotations

import time
from typing import Any

from event_replay.common.sanitize import maskSecretsInObject, truncateText
from event_replay.domain.error_codes import ErrorCode
from event_replay.domain.ports.execution import ExecutionResult, RequestExecutorProtocol, RequestSpec
from event_replay.infra.http.client import ApiError, HttpApiClient


class HttpRequestExecutor(RequestExecutorProtocol):
    """
    Назначение/ответственность:
        Адаптер RequestExecutorProtocol поверх HttpApiClient.
        Выполняет RequestSpec, нормализует результат и маскирует чувствительные данные.
    Ограничения:
        - Синхронное выполнение; повторы на уровне клиента управляются самим клиентом.
        - expected_statuses проверяются здесь, клиент их не знает.
        - Транспортные ошибки не пробрасываются, а превращаются в ExecutionResult(ok=False).
    """

    def __init__(self, client: HttpApiClient, timeout_seconds: float | None = None):
        self._client = client
        self._timeout_seconds = timeout_seconds

    def execute(self, request: RequestSpec) -> ExecutionResult:
        """
        Контракт (вход/выход):
            Вход: RequestSpec.
            Выход: ExecutionResult c признаком ok, статусом и ошибкой/данными.
        Алгоритм:
            - Делегирует вызов HttpApiClient.requestAny.
            - Сравнивает status_code с expected_statuses.
            - Для неуспешного статуса берёт message из JSON-ответа или фрагмент тела.
            - Ошибки клиента маппит в ExecutionResult с error_code.
        """
        start = time.perf_counter()
        if hasattr(self._client, "resetRetryAttempts"):
            self._client.resetRetryAttempts()
        timeout = request.timeout_seconds if request.timeout_seconds is not None else self._timeout_seconds
        try:
            status_code, response_json, body_snippet = self._client.requestAny(
                method=request.method,
                url=request.url,
                json=request.json,
                headers=request.headers,
                timeout=timeout,
            )
        except ApiError as err:
            return self._from_api_error(err, start)

        ok = status_code in request.expected_statuses
        error_code: str | None = None
        error_message: str | None = None
        if not ok:
            error_code = ErrorCode.from_status(status_code).value
            error_message = truncateText(self._error_text(status_code, response_json, body_snippet))
        return ExecutionResult(
            ok=ok,
            status_code=status_code,
            error_code=error_code,
            error_message=error_message,
            attempts=1 + self._retry_attempts(),
            duration_ms=int((time.perf_counter() - start) * 1000),
            response_json=maskSecretsInObject(response_json) if response_json is not None else None,
        )

    def _error_text(self, status_code: int, response_json: Any, body_snippet: str | None) -> str:
        if isinstance(response_json, dict):
            message = response_json.get("message")
            if message:
                return str(message)
        return body_snippet or f"HTTP {status_code}"

    def _from_api_error(self, err: ApiError, start: float) -> ExecutionResult:
        """
        Назначение:
            Преобразует ApiError в ExecutionResult с унифицированными кодами/сообщениями.
        """
        status_code = getattr(err, "status_code", None)
        if err.code == "NETWORK_ERROR":
            error_code = ErrorCode.NETWORK_ERROR.value
        elif err.code == "INVALID_JSON":
            error_code = ErrorCode.INVALID_JSON.value
        else:
            error_code = ErrorCode.from_status(status_code).value
        msg_parts: list[str] = []
        if err.message:
            msg_parts.append(err.message)
        snippet = getattr(err, "body_snippet", None)
        if snippet:
            msg_parts.append(snippet)
        error_message = truncateText(" | ".join(msg_parts) if msg_parts else None)
        return ExecutionResult(
            ok=False,
            status_code=status_code,
            error_code=error_code,
            error_message=error_message,
            attempts=1 + self._retry_attempts(),
            duration_ms=int((time.perf_counter() - start) * 1000),
            response_json=None,
        )

    def _retry_attempts(self) -> int:
        if hasattr(self._client, "getRetryAttempts"):
            return self._client.getRetryAttempts()
        return 0
