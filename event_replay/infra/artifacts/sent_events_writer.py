from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterable

from event_replay.common.time import getUtcNowIso
from event_replay.domain.dispatch.models import DispatchOutcome, OutcomeStatus


def buildSentEventRows(outcomes: Iterable[DispatchOutcome], sentAt: str | None = None) -> list[dict[str, Any]]:
    """
    Назначение:
        Строки выгрузки отправленных событий: поля исходной записи + метаданные доставки.
        sentAt берётся из meta исхода (время его вызова), иначе текущее время.
    """
    stamp = sentAt or getUtcNowIso()
    rows: list[dict[str, Any]] = []
    for outcome in outcomes:
        if outcome.status != OutcomeStatus.SENT or outcome.unit is None:
            continue
        unit = outcome.unit
        row: dict[str, Any] = dict(unit.source)
        row.update(
            {
                "recordIndex": unit.record_index,
                "lineNo": unit.line_no,
                "batchIndex": unit.batch_index,
                "attempt": outcome.attempt,
                "statusCode": outcome.status_code,
                "responseId": outcome.response_id,
                "sentAt": outcome.meta.get("sentAt") or stamp,
            }
        )
        rows.append(row)
    return rows


def writeSentEventsJson(
    outcomes: Iterable[DispatchOutcome],
    outputDir: str,
    channel: str,
    runId: str,
) -> str | None:
    """
    Назначение:
        Пишет sent-events-<channel>-<runId>.json. Ничего не пишет, если отправленных нет.

    Выходные данные:
        Путь к файлу или None.
    """
    rows = buildSentEventRows(outcomes)
    if not rows:
        return None
    Path(outputDir).mkdir(parents=True, exist_ok=True)
    path = str(Path(outputDir) / f"sent-events-{channel}-{runId}.json")
    with open(path, "w", encoding="utf-8") as f:
        json.dump(rows, f, ensure_ascii=False, indent=2)
    return path
