from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Mapping

from event_replay.domain.validation.fields import CONVERSION_VALUE, CURRENCY_CODE

CURRENCY_CODE_RE = re.compile(r"^[A-Z]{3}$")

WARN_INCOMPLETE = (
    "Currency data incomplete - both currencyCode and conversionValue required, ignoring both fields"
)
WARN_BAD_CODE = "Invalid currencyCode format - must be 3-character ISO code, ignoring currency data"
WARN_BAD_VALUE = "Invalid conversionValue - must be a number >= 0, ignoring currency data"


@dataclass(frozen=True)
class CurrencyDecision:
    """
    Назначение:
        Решение по паре currencyCode/conversionValue для одной записи.

    Инварианты:
        - include=True => currency_code и amount заданы.
        - include=False => пара не попадает в payload ни одного канала.
    """

    include: bool
    currency_code: str | None = None
    amount: Decimal | None = None
    warning: str | None = None

    @property
    def amount_text(self) -> str | None:
        if self.amount is None:
            return None
        return format_amount(self.amount)


def format_amount(amount: Decimal) -> str:
    """Decimal -> строка без экспоненты и хвостовых нулей (10.50 -> "10.5", 100 -> "100")."""
    return format(amount.normalize(), "f")


def evaluate_currency(values: Mapping[str, str]) -> CurrencyDecision:
    """
    Назначение:
        Чистая функция от записи: включать ли пару валюты в payload.

    Алгоритм:
        - обе пустые -> не включать, без предупреждения;
        - только одна -> не включать, предупреждение;
        - код не из 3 латинских букв (после upper) -> предупреждение;
        - сумма не число или < 0 -> предупреждение;
        - иначе include=True с нормализованным кодом.
    """
    raw_code = (values.get(CURRENCY_CODE) or "").strip()
    raw_value = (values.get(CONVERSION_VALUE) or "").strip()

    if not raw_code and not raw_value:
        return CurrencyDecision(include=False)
    if not raw_code or not raw_value:
        return CurrencyDecision(include=False, warning=WARN_INCOMPLETE)

    code = raw_code.upper()
    if not CURRENCY_CODE_RE.match(code):
        return CurrencyDecision(include=False, warning=WARN_BAD_CODE)

    try:
        amount = Decimal(raw_value)
    except InvalidOperation:
        return CurrencyDecision(include=False, warning=WARN_BAD_VALUE)
    if not amount.is_finite() or amount < 0:
        return CurrencyDecision(include=False, warning=WARN_BAD_VALUE)

    return CurrencyDecision(include=True, currency_code=code, amount=amount)
