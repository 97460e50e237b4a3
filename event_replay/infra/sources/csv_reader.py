from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path

from event_replay.domain.exceptions import ParseError
from event_replay.domain.models import RawRecord
from event_replay.domain.validation.fields import CONVERSION_TIME

NOT_PROVIDED_SENTINEL = "[not provided]"
ISO_8601_UTC = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d{3})?Z$")
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class DroppedLine:
    line_no: int
    expected: int
    got: int

    @property
    def message(self) -> str:
        return f"line {self.line_no} dropped: expected {self.expected} columns, got {self.got}"


@dataclass
class ParsedCsv:
    """
    Назначение:
        Результат разбора CSV: записи в порядке файла плюс то, что было отброшено.
    """

    headers: list[str]
    records: list[RawRecord] = field(default_factory=list)
    dropped_lines: list[DroppedLine] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def has_column(self, name: str) -> bool:
        return name in self.headers


def cleanValue(value: str) -> str:
    """
    Назначение:
        Чистка значения, выгруженного из CRM.
    Алгоритм:
        trim -> снять один слой внешних кавычек -> "[not provided]" в "" -> "" внутри в ".
    """
    value = value.strip()
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        value = value[1:-1]
    if value == NOT_PROVIDED_SENTINEL:
        return ""
    return value.replace('""', '"')


def isoToEpochMs(value: str) -> str:
    """
    ISO 8601 UTC (YYYY-MM-DDTHH:MM:SS(.mmm)Z) -> строка epoch ms.
    ValueError, если дата несуществующая.
    """
    text = value[:-1] + "+00:00"
    dt = datetime.fromisoformat(text)
    return str((dt - _EPOCH) // timedelta(milliseconds=1))


def splitCsvLine(line: str) -> list[str]:
    """
    Одна строка CSV: кавычка переключает режим, запятая вне кавычек разделяет поля,
    "" внутри кавычек -> ".
    """
    tokens: list[str] = []
    current: list[str] = []
    in_quotes = False
    i = 0
    while i < len(line):
        char = line[i]
        if char == '"':
            if in_quotes and line[i + 1 : i + 2] == '"':
                current.append('"')
                i += 1
            else:
                in_quotes = not in_quotes
        elif char == "," and not in_quotes:
            tokens.append("".join(current))
            current = []
        else:
            current.append(char)
        i += 1
    tokens.append("".join(current))
    return tokens


def parse_crm_csv(text: str) -> ParsedCsv:
    """
    Назначение:
        Разбирает текст CSV в последовательность RawRecord.

    Контракт:
        - Первая непустая строка: заголовок, колонки через запятую (с trim).
        - Пустые строки пропускаются.
        - Строка с другим числом колонок отбрасывается и попадает в dropped_lines.
        - conversionTime в формате ISO 8601 UTC переводится в epoch ms; при ошибке значение "".
        - Меньше двух строк -> ParseError.
    """
    # только \n: splitlines() режет и по \x0c, \x1d, \u2028 внутри значений
    lines = [line.rstrip("\r") for line in text.strip().split("\n")]
    if len(lines) < 2:
        raise ParseError(
            "CSV file must have at least a header row and one data row",
            code="CSV_NO_DATA",
        )

    headers = [h.strip() for h in lines[0].split(",")]
    if not any(headers):
        raise ParseError("CSV header row is empty", code="CSV_NO_HEADER")

    parsed = ParsedCsv(headers=headers)
    for offset, line in enumerate(lines[1:], start=2):
        if not line.strip():
            continue
        tokens = splitCsvLine(line)
        if len(tokens) != len(headers):
            dropped = DroppedLine(line_no=offset, expected=len(headers), got=len(tokens))
            parsed.dropped_lines.append(dropped)
            parsed.warnings.append(dropped.message)
            continue

        values: dict[str, str] = {}
        for header, raw in zip(headers, tokens):
            value = cleanValue(raw)
            if header == CONVERSION_TIME and value and ISO_8601_UTC.match(value):
                try:
                    value = isoToEpochMs(value)
                except ValueError:
                    parsed.warnings.append(f"line {offset}: invalid ISO-8601 date {value!r}, conversionTime cleared")
                    value = ""
            values[header] = value

        parsed.records.append(RawRecord(index=len(parsed.records), line_no=offset, values=values))

    return parsed


def read_crm_csv(path: str | Path) -> ParsedCsv:
    """Читает файл (UTF-8, BOM допускается) и разбирает его через parse_crm_csv."""
    try:
        with open(path, "r", encoding="utf-8-sig", newline="") as f:
            text = f.read()
    except FileNotFoundError as exc:
        raise ParseError(f"CSV file not found: {path}", code="CSV_NOT_FOUND") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise ParseError(f"Failed to read CSV file {path}: {exc}", code="CSV_UNREADABLE") from exc
    return parse_crm_csv(text)
