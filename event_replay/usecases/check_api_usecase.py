from __future__ import annotations

import logging
from dataclasses import dataclass

from event_replay.domain.ports.execution import RequestExecutorProtocol, RequestSpec
from event_replay.infra.logging.setup import logEvent

AUTH_STATUSES = (401, 403)


@dataclass(frozen=True)
class ApiCheckResult:
    reachable: bool
    status_code: int | None
    message: str
    latency_ms: int | None = None


class CheckApiUseCase:
    """
    Назначение/ответственность:
        Проверка доступности LinkedIn API одним GET на endpoint.

    Правила:
        - любой HTTP-ответ означает, что домен доступен;
        - 401/403: доступен, но нужна авторизация (токен отсутствует или неверен);
        - сетевой сбой: недоступен.
    """

    def __init__(self, executor: RequestExecutorProtocol) -> None:
        self.executor = executor

    def run(self, url: str, headers: dict[str, str], logger: logging.Logger, run_id: str, report) -> tuple[int, ApiCheckResult]:
        request = RequestSpec(
            method="GET",
            url=url,
            headers=headers,
            expected_statuses=tuple(range(200, 300)),
        )
        result = self.executor.execute(request)

        if result.status_code is None:
            check = ApiCheckResult(False, None, f"API unreachable: {result.error_message or 'network error'}", result.duration_ms)
        elif result.status_code in AUTH_STATUSES:
            check = ApiCheckResult(
                True,
                result.status_code,
                f"API reachable (HTTP {result.status_code}): authentication required",
                result.duration_ms,
            )
        else:
            check = ApiCheckResult(True, result.status_code, f"API reachable (HTTP {result.status_code})", result.duration_ms)

        level = logging.INFO if check.reachable else logging.ERROR
        logEvent(logger, level, run_id, "api", f"{check.message} url={url} latency_ms={check.latency_ms}")
        report.set_context(
            "api_check",
            {
                "url": url,
                "reachable": check.reachable,
                "status_code": check.status_code,
                "message": check.message,
                "latency_ms": check.latency_ms,
            },
        )
        report.status = "SUCCESS" if check.reachable else "FAILED"
        return (0 if check.reachable else 2), check
