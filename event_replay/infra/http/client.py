from __future__ import annotations

import time
from typing import Any, Callable

import httpx

from event_replay.errors import AppError


class ApiError(AppError):
    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body_snippet: str | None = None,
        retryable: bool = False,
        details: dict | None = None,
        code: str | None = None,
    ):
        """
        Назначение:
            Исключение HTTP/сетевого уровня HttpApiClient.
        Контракт:
            - code: строковый код (NETWORK_ERROR, HTTP_* и т.п.).
            - status_code/body_snippet используются для диагностики.
        """
        super().__init__(
            category="api",
            code=code or (f"HTTP_{status_code}" if status_code else "API_ERROR"),
            message=message,
            retryable=retryable,
            details=details or {},
        )
        self.status_code = status_code
        self.body_snippet = body_snippet


class HttpApiClient:
    """
    Назначение/ответственность:
        Тонкая обёртка над httpx.Client для исходящих вызовов каналов.

    Ограничения:
        - Статусы ответа не интерпретируются: их проверяет исполнитель запросов.
        - Повторы на уровне клиента (429/5xx/сеть) выключены по умолчанию (retries=0):
          повтор неудачных событий делает диспетчер одним отдельным проходом.
    """

    def __init__(
        self,
        timeoutSeconds: float = 30.0,
        retries: int = 0,
        retryBackoffSeconds: float = 0.5,
        defaultHeaders: dict[str, str] | None = None,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.retries = retries
        self.retryBackoffSeconds = retryBackoffSeconds
        self.retry_attempts = 0
        self._defaultHeaders = dict(defaultHeaders or {"accept": "application/json"})
        self._sleep = sleep

        self.client = httpx.Client(timeout=timeoutSeconds, transport=transport)

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "HttpApiClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def resetRetryAttempts(self) -> None:
        self.retry_attempts = 0

    def getRetryAttempts(self) -> int:
        return self.retry_attempts

    def _headers_with(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        """Базовые заголовки + заголовки канала."""
        base = dict(self._defaultHeaders)
        if extra:
            base.update(extra)
        return base

    def _should_retry(self, resp: httpx.Response) -> bool:
        if resp.status_code == 429:
            return True
        if 500 <= resp.status_code <= 599:
            return True
        return False

    def _sleep_backoff(self, attempt: int) -> None:
        delay = self.retryBackoffSeconds * (2 ** attempt)
        self._sleep(delay)

    def requestAny(
        self,
        method: str,
        url: str,
        json: Any | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> tuple[int, Any | None, str | None]:
        """
        Выполняет запрос без проверки ожидаемых статусов.

        Возвращает кортеж: (status_code, response_json_or_text, body_snippet).
        Сетевые ошибки после исчерпания повторов -> ApiError(code=NETWORK_ERROR).
        """
        attempt = 0
        request_timeout = timeout if timeout is not None else self.client.timeout
        while True:
            try:
                resp = self.client.request(
                    method,
                    url,
                    headers=self._headers_with(headers),
                    json=json,
                    timeout=request_timeout,
                )
            except (httpx.TimeoutException, httpx.TransportError) as exc:
                if attempt >= self.retries:
                    message = "Request timed out" if isinstance(exc, httpx.TimeoutException) else "Network error"
                    raise ApiError(
                        f"{message}: {exc}" if str(exc) else message,
                        status_code=None,
                        retryable=True,
                        code="NETWORK_ERROR",
                        details={"exception": exc.__class__.__name__},
                    ) from exc
                self.retry_attempts += 1
                self._sleep_backoff(attempt)
                attempt += 1
                continue

            if self._should_retry(resp) and attempt < self.retries:
                self.retry_attempts += 1
                self._sleep_backoff(attempt)
                attempt += 1
                continue

            status_code = resp.status_code
            body_snippet = resp.text[:200] if resp.text else None
            if resp.text:
                try:
                    return status_code, resp.json(), body_snippet
                except ValueError:
                    return status_code, resp.text, body_snippet
            return status_code, None, body_snippet
