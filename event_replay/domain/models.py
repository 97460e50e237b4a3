from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Mapping


class DiagnosticStage(str, Enum):
    """
    Назначение:
        Источник диагностического события в пайплайне.
    """

    PARSE = "PARSE"
    VALIDATE = "VALIDATE"
    BUILD = "BUILD"
    DISPATCH = "DISPATCH"


@dataclass(frozen=True)
class DiagnosticItem:
    """
    Назначение:
        Диагностическое сообщение пайплайна (ошибка/предупреждение) в человекочитаемом виде.
    """

    stage: DiagnosticStage
    code: str
    field: str | None
    message: str


@dataclass(frozen=True)
class RawRecord:
    """
    Назначение:
        Одна строка CSV после очистки значений.

    Инварианты:
        - values сохраняет порядок колонок CSV и не изменяется после создания.
        - index: позиция записи среди распознанных строк (с 0), line_no: номер строки файла.
    """

    index: int
    line_no: int
    values: Mapping[str, str]

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    def get(self, name: str) -> str:
        value = self.values.get(name)
        return value if value is not None else ""

    def has_value(self, name: str) -> bool:
        return self.get(name).strip() != ""

    @property
    def email(self) -> str:
        return self.get("email").strip()

    def as_dict(self) -> dict[str, str]:
        return dict(self.values)


@dataclass(frozen=True)
class ValidationResult:
    """
    Назначение:
        Результат валидации одной записи.

    Поля:
        record_index: позиция записи во входной последовательности.
        accepted: запись допускается к отправке.
        reasons: причины отказа (пусто, если accepted).
        include_user_info: можно ли отправлять группу userInfo.
        warnings: предупреждения, не влияющие на допуск.
    """

    record_index: int
    accepted: bool
    include_user_info: bool
    reasons: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    diagnostics: tuple[DiagnosticItem, ...] = field(default=(), compare=False)

    @property
    def rejected(self) -> bool:
        return not self.accepted

    @property
    def error_items(self) -> tuple[DiagnosticItem, ...]:
        return self.diagnostics[: len(self.reasons)]

    @property
    def warning_items(self) -> tuple[DiagnosticItem, ...]:
        return self.diagnostics[len(self.reasons) :]
