from __future__ import annotations

from event_replay.errors import AppError


class ParseError(AppError):
    """
    Назначение:
        Фатальная ошибка чтения/разбора CSV. Прерывает запуск до любой отправки.
    """

    def __init__(self, message: str, *, code: str = "CSV_INVALID", details: dict | None = None):
        super().__init__(category="csv", code=code, message=message, details=details or {})


class ConfigurationError(AppError):
    """
    Назначение:
        Фатальная ошибка конфигурации (лимит, URL, токен, conversion id).
        Проверяется до обработки первой записи.
    """

    def __init__(self, message: str, *, field: str | None = None):
        super().__init__(
            category="config",
            code="CONFIG_INVALID",
            message=message,
            details={"field": field} if field else {},
        )
        self.field = field


__all__ = ["ParseError", "ConfigurationError"]
