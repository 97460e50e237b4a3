from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from event_replay.domain.models import DiagnosticItem, DiagnosticStage, RawRecord
from event_replay.domain.run_config import RunConfiguration
from event_replay.domain.timestamps import (
    RECENCY_WINDOW_DAYS,
    age_days,
    days_ahead,
    is_within_window,
    parse_epoch_ms,
)
from event_replay.domain.validation.currency import evaluate_currency
from event_replay.domain.validation.fields import (
    CONVERSION_TIME,
    EMAIL,
    FIRST_NAME,
    LAST_NAME,
    USER_INFO_FIELDS,
    USER_INFO_TRIGGER_FIELDS,
)


@dataclass
class ValidationState:
    """
    Назначение:
        Изменяемый аккумулятор, через который проходят правила одной записи.
    """

    include_user_info: bool = True
    errors: list[DiagnosticItem] = field(default_factory=list)
    warnings: list[DiagnosticItem] = field(default_factory=list)

    def reject(self, code: str, field_name: str | None, message: str) -> None:
        self.errors.append(DiagnosticItem(DiagnosticStage.VALIDATE, code, field_name, message))

    def warn(self, code: str, field_name: str | None, message: str) -> None:
        self.warnings.append(DiagnosticItem(DiagnosticStage.VALIDATE, code, field_name, message))


class RecordRule(Protocol):
    """
    Назначение:
        Контракт правила валидации записи.
        Правило не делает I/O и пишет результат только в state.
    """

    name: str

    def apply(self, record: RawRecord, state: ValidationState, config: RunConfiguration, now_ms: int) -> None: ...


@dataclass(frozen=True)
class EmailRequiredRule:
    name: str = "email_required"

    def apply(self, record: RawRecord, state: ValidationState, config: RunConfiguration, now_ms: int) -> None:
        if not record.has_value(EMAIL):
            state.reject("EMAIL_MISSING", EMAIL, "missing required email field")


@dataclass(frozen=True)
class UserInfoCompletenessRule:
    """
    Группа userInfo отправляется, только если заданы и firstName, и lastName.
    Без title/companyName/countryCode неполные имена подавляются молча,
    при их наличии с предупреждением.
    """

    name: str = "user_info_completeness"

    def apply(self, record: RawRecord, state: ValidationState, config: RunConfiguration, now_ms: int) -> None:
        missing = [name for name in (FIRST_NAME, LAST_NAME) if not record.has_value(name)]
        if not any(record.has_value(name) for name in USER_INFO_TRIGGER_FIELDS):
            state.include_user_info = not missing
            return
        if not missing:
            state.include_user_info = True
            return
        state.include_user_info = False
        state.warn(
            "USER_INFO_INCOMPLETE",
            ",".join(missing),
            f"User information detected but missing required fields ({', '.join(missing)}). "
            f"Excluding all user information fields ({', '.join(USER_INFO_FIELDS)}) from this record.",
        )


@dataclass(frozen=True)
class ConversionTimeRecencyRule:
    """
    Отклоняет метки вне окна 90 дней, только если замена старых меток выключена.
    При reset_old_timestamps запись пропускается: метку подменит сборщик payload.
    """

    name: str = "conversion_time_recency"

    def apply(self, record: RawRecord, state: ValidationState, config: RunConfiguration, now_ms: int) -> None:
        if not config.use_conversion_time or config.reset_old_timestamps:
            return
        if not record.has_value(CONVERSION_TIME):
            return
        parsed = parse_epoch_ms(record.get(CONVERSION_TIME))
        if parsed is None:
            return
        if is_within_window(parsed, now_ms):
            return
        if parsed > now_ms:
            message = (
                f"conversionTime is {days_ahead(parsed, now_ms)} days in the future "
                f"(outside {RECENCY_WINDOW_DAYS}-day recency window)"
            )
        else:
            message = (
                f"conversionTime is {age_days(parsed, now_ms)} days old "
                f"(beyond {RECENCY_WINDOW_DAYS}-day recency window)"
            )
        state.reject("CONVERSION_TIME_OUT_OF_WINDOW", CONVERSION_TIME, message)


@dataclass(frozen=True)
class CurrencyPairRule:
    name: str = "currency_pair"

    def apply(self, record: RawRecord, state: ValidationState, config: RunConfiguration, now_ms: int) -> None:
        decision = evaluate_currency(record.values)
        if decision.warning:
            state.warn("CURRENCY_EXCLUDED", "currencyCode,conversionValue", decision.warning)


DEFAULT_RULES: tuple[RecordRule, ...] = (
    EmailRequiredRule(),
    UserInfoCompletenessRule(),
    ConversionTimeRecencyRule(),
    CurrencyPairRule(),
)
