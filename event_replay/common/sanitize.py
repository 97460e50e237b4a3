from __future__ import annotations

SENSITIVE_KEYS: tuple[str, ...] = (
    "authorization",
    "access_token",
    "token",
    "linkedin_access_token",
    "secret",
)


def maskSecret(value: str | None) -> str | None:
    """
    Назначение:
        Маскирует секреты для безопасного вывода в stdout/logs.

    Входные данные:
        value: str | None
            Исходное значение (например, access token).

    Выходные данные:
        str | None
            Если value задано: '***', иначе None.
    """
    if value is None:
        return None
    return "***"


def truncateText(value: str | None, limit: int = 500) -> str | None:
    """
    Назначение:
        Ограничивает длину текста, чтобы не раздувать логи и отчёты.
    """
    if value is None:
        return None
    if len(value) <= limit:
        return value
    suffix = "..." if limit > 3 else ""
    head = limit - len(suffix)
    return value[:head] + suffix


def maskSecretsInObject(obj: object, sensitive_keys: tuple[str, ...] = SENSITIVE_KEYS) -> object:
    """
    Назначение:
        Рекурсивно маскирует значения по заданным ключам в структурах dict/list.
        Используется для заголовков запросов и контекста конфигурации в отчёте.
    """
    sensitive = {key.lower() for key in sensitive_keys}
    if isinstance(obj, dict):
        masked: dict[str, object] = {}
        for k, v in obj.items():
            if str(k).lower() in sensitive:
                masked[k] = maskSecret(str(v) if v is not None else None)
            else:
                masked[k] = maskSecretsInObject(v, sensitive_keys)
        return masked
    if isinstance(obj, list):
        return [maskSecretsInObject(item, sensitive_keys) for item in obj]
    return obj
