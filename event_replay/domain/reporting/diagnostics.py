from __future__ import annotations

from event_replay.domain.dispatch.models import NETWORK_ERROR_KEY
from event_replay.domain.reporting.aggregator import AggregateSnapshot

STATUS_TEXTS: dict[str, str] = {
    "200": "OK",
    "201": "Created",
    "202": "Accepted",
    "204": "No Content",
    "207": "Multi-Status (Batch Response)",
    "400": "Bad Request",
    "401": "Unauthorized",
    "403": "Forbidden",
    "404": "Not Found",
    "422": "Unprocessable Entity",
    "429": "Too Many Requests",
    "500": "Internal Server Error",
    "502": "Bad Gateway",
    "503": "Service Unavailable",
    "504": "Gateway Timeout",
    NETWORK_ERROR_KEY: "Network/Connection Error",
}


def status_text(status_key: str | int) -> str:
    return STATUS_TEXTS.get(str(status_key), "Unknown")


def retry_recommendations(snapshot: AggregateSnapshot, rate_per_minute: int | None = None) -> list[str]:
    """
    Назначение:
        Подсказки по итоговым ошибкам, выведенные из статусов и текстов групп ошибок.

    Правила:
        429 или timeout -> снизить частоту; 400 -> проверить данные;
        401/403 -> токен и права; сеть -> связность; 5xx -> повторить позже.
    """
    keys = [group.key for group in snapshot.failure_groups]
    lowered = [key.lower() for key in keys]
    tips: list[str] = []

    if any(key.startswith("429:") for key in keys) or any("timed out" in key or "timeout" in key for key in lowered):
        current = f" (currently {rate_per_minute})" if rate_per_minute else ""
        tips.append(f"Reduce the calls-per-minute rate{current}")
        tips.append("Increase the delay between calls")
    if any(key.startswith("400:") or "bad request" in key for key in lowered):
        tips.append("Check data format and required fields")
        tips.append("Validate conversion tracking parameters")
    if any(key.startswith("401:") or key.startswith("403:") for key in keys):
        tips.append("Check the access token and its scopes")
    if any(key.startswith(f"{NETWORK_ERROR_KEY}:") for key in keys):
        tips.append("Check internet connection")
        tips.append("Retry during off-peak hours")
    if any(key[:1] == "5" and key[1:3].isdigit() for key in keys):
        tips.append("Remote server error: retry the failed records later")
    return tips
