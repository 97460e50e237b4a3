from __future__ import annotations

EMAIL = "email"
FIRST_NAME = "firstName"
LAST_NAME = "lastName"
TITLE = "title"
COMPANY_NAME = "companyName"
COUNTRY_CODE = "countryCode"
CURRENCY_CODE = "currencyCode"
CONVERSION_VALUE = "conversionValue"
CONVERSION_TIME = "conversionTime"

NAME_FIELDS: tuple[str, ...] = (FIRST_NAME, LAST_NAME)
# Наличие любого из них требует firstName + lastName.
USER_INFO_TRIGGER_FIELDS: tuple[str, ...] = (TITLE, COMPANY_NAME, COUNTRY_CODE)
USER_INFO_FIELDS: tuple[str, ...] = (FIRST_NAME, LAST_NAME, TITLE, COMPANY_NAME, COUNTRY_CODE)
CURRENCY_FIELDS: tuple[str, ...] = (CURRENCY_CODE, CONVERSION_VALUE)
