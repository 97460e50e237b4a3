from __future__ import annotations

import logging
import signal
import sys
import time
from dataclasses import replace
from pathlib import Path

import typer

from event_replay.channels.linkedin import linkedin_headers
from event_replay.channels.registry import build_channel
from event_replay.common.run_id import generate_run_id
from event_replay.common.sanitize import maskSecret
from event_replay.common.time import getDurationMs
from event_replay.config import LoadedSettings, Settings, build_run_configuration, load_settings, read_secret_file
from event_replay.domain.dispatch.context import RunContext
from event_replay.domain.exceptions import ConfigurationError, ParseError
from event_replay.domain.reporting.aggregator import AggregateSnapshot, formatPct, percent
from event_replay.domain.reporting.diagnostics import retry_recommendations, status_text
from event_replay.domain.run_config import ChannelKind, RunConfiguration
from event_replay.errors import AppError
from event_replay.infra.artifacts.report_writer import createEmptyReport, finalizeReport, writeReportJson
from event_replay.infra.artifacts.sent_events_writer import writeSentEventsJson
from event_replay.infra.http.client import HttpApiClient
from event_replay.infra.http.request_executor import HttpRequestExecutor
from event_replay.infra.logging.setup import (
    StdStreamToLogger,
    TeeStream,
    closeLogger,
    createCommandLogger,
    logEvent,
    mapLogLevel,
)
from event_replay.infra.sources.csv_reader import read_crm_csv
from event_replay.usecases.check_api_usecase import CheckApiUseCase
from event_replay.usecases.prepare_usecase import PreparedRun, prepare_run
from event_replay.usecases.send_usecase import SendUseCase
from event_replay.usecases.validate_usecase import ValidateUseCase

app = typer.Typer(no_args_is_help=True, add_completion=False)
sendApp = typer.Typer(no_args_is_help=True, help="Replay CSV records to a delivery channel")

FAILURE_SAMPLE_SIZE = 3


def pauseSeconds(seconds: float) -> None:
    time.sleep(seconds)


def ensureDir(path: str) -> None:
    Path(path).mkdir(parents=True, exist_ok=True)


def requireCsv(csvPath: str | None) -> None:
    """
    Назначение:
        Базовая проверка наличия CSV-файла.

    Поведение:
        - Если csvPath не задан или файл не существует: exit code 2.
    """
    if not csvPath:
        typer.echo("ERROR: --csv is required", err=True)
        raise typer.Exit(code=2)

    p = Path(csvPath)
    if not p.exists() or not p.is_file():
        typer.echo(f"ERROR: CSV file not found: {csvPath}", err=True)
        raise typer.Exit(code=2)


def printRunHeader(runId: str, command: str, settings: Settings, sources: list[str], config: RunConfiguration | None) -> None:
    """
    Назначение:
        Печатает безопасную сводку параметров запуска (без секретов).
    """
    line = f"run_id={runId} command={command} sources={sources} log_level={settings.log_level}"
    if config is not None:
        line += (
            f" channel={config.channel.value} endpoint={config.endpoint_url or '-'} rate={config.rate_per_minute}/min"
            f" batch_size={config.batch_size} use_conversion_time={config.use_conversion_time}"
            f" reset_old_timestamps={config.reset_old_timestamps}"
        )
        if config.channel == ChannelKind.LINKEDIN:
            line += (
                f" conversion_id={config.conversion_id} api_version={settings.linkedin_api_version}"
                f" token={maskSecret(settings.linkedin_access_token)}"
            )
    typer.echo(line)


def runWithReport(
    ctx: typer.Context,
    commandName: str,
    csvPath: str | None,
    requiresCsv: bool,
    runner,
    settings: Settings | None = None,
) -> None:
    """
    Назначение:
        Унифицированная обвязка выполнения команд:
        - создаёт логгер + файл лога
        - создаёт report.json skeleton
        - валидирует обязательный CSV
        - перенаправляет stdout/stderr в лог (tee)
        - гарантирует запись отчёта в finally

    Поведение:
        - Код возврата runner становится exit code процесса.
        - Непойманное исключение runner: запись в лог, exit code 2.
    """
    runId = ctx.obj["runId"]
    settings = settings or ctx.obj["settings"]
    sources = ctx.obj["sources"]

    startMonotonic = time.monotonic()

    logger, logFilePath = createCommandLogger(
        commandName=commandName,
        logDir=settings.log_dir,
        runId=runId,
        logLevel=settings.log_level,
        secrets=[settings.linkedin_access_token] if settings.linkedin_access_token else None,
    )

    report = createEmptyReport(runId=runId, command=commandName, configSources=sources)
    report.set_meta(csv_path=csvPath, items_limit=settings.report_items_limit)

    originalStdout = sys.stdout
    originalStderr = sys.stderr

    stdoutLoggerStream = StdStreamToLogger(logger, logging.INFO, runId, "stdout")
    stderrLoggerStream = StdStreamToLogger(logger, logging.ERROR, runId, "stderr")

    sys.stdout = TeeStream(originalStdout, stdoutLoggerStream)
    sys.stderr = TeeStream(originalStderr, stderrLoggerStream)

    exitCode: int | None = None

    try:
        logEvent(logger, logging.INFO, runId, "core", "Command started")

        if requiresCsv:
            try:
                requireCsv(csvPath)
            except typer.Exit:
                logEvent(logger, logging.ERROR, runId, "csv", "CSV is missing or not accessible")
                report.status = "FAILED"
                exitCode = 2
                return

        try:
            exitCode = runner(logger, report)
        except Exception as exc:
            logEvent(logger, logging.ERROR, runId, "core", f"Command failed: {exc!r}")
            typer.echo(f"ERROR: {commandName} failed: {exc} (see logs/report)", err=True)
            report.status = "FAILED"
            exitCode = 2

    finally:
        durationMs = getDurationMs(startMonotonic, time.monotonic())
        finalizeReport(
            report=report,
            durationMs=durationMs,
            logFile=logFilePath,
            reportDir=settings.report_dir,
            outputDir=settings.output_dir,
        )
        reportPath = writeReportJson(report, settings.report_dir, f"report_{commandName.replace(' ', '-')}_{runId}")
        logEvent(logger, logging.INFO, runId, "report", f"Report written: {reportPath}")

        sys.stdout.flush()
        sys.stderr.flush()
        sys.stdout = originalStdout
        sys.stderr = originalStderr
        closeLogger(logger)

        if exitCode is not None:
            raise typer.Exit(code=exitCode)


def reportFatal(logger: logging.Logger, runId: str, report, component: str, exc: AppError) -> int:
    """Фатальная ошибка до отправки: лог, контекст отчёта, сообщение в stderr. Возвращает exit code 2."""
    logEvent(logger, logging.ERROR, runId, component, str(exc))
    report.set_context("error", exc.to_dict())
    typer.echo(f"ERROR: {exc}", err=True)
    return 2


def applyOverrides(settings: Settings, **overrides) -> Settings:
    """Переопределения уровня команды поверх итоговых Settings (None не применяется)."""
    values = {k: v for k, v in overrides.items() if v is not None}
    return replace(settings, **values) if values else settings


def resolveToken(token: str | None, tokenFile: str | None) -> str | None:
    if token:
        return token
    if tokenFile:
        return read_secret_file(tokenFile)
    return None


def buildExecutor(settings: Settings, config_timeout: float) -> tuple[HttpApiClient, HttpRequestExecutor]:
    client = HttpApiClient(
        timeoutSeconds=config_timeout,
        retries=settings.retries,
        retryBackoffSeconds=settings.retry_backoff_seconds,
        sleep=pauseSeconds,
    )
    return client, HttpRequestExecutor(client, timeout_seconds=config_timeout)


def printPlan(prepared: PreparedRun) -> None:
    config = prepared.config
    typer.echo(
        f"Plan: records={prepared.total_records} valid={len(prepared.units)} "
        f"rejected={prepared.total_records - len(prepared.units)} calls={prepared.calls_planned} "
        f"events_per_call={config.batch_size} rate={config.rate_per_minute}/min "
        f"estimated_time={prepared.estimated_minutes} min"
    )
    for notice in prepared.notices:
        typer.echo(f"NOTICE: {notice}")


def printProgress(label: str, snapshot: AggregateSnapshot) -> None:
    typer.echo(
        f"{label}: progress {formatPct(snapshot.progress_pct)} "
        f"(sent {snapshot.sent}, failed {snapshot.failed}, skipped {snapshot.skipped}) "
        f"success {formatPct(snapshot.success_rate_pct)}"
    )


def printSummary(context: RunContext, elapsedSeconds: float, ratePerMinute: int) -> None:
    """
    Назначение:
        Итоговая сводка: счётчики, средняя скорость, таблица статусов,
        разбивка ошибок и рекомендации.
    """
    snapshot = context.aggregator.snapshot()
    minutes = elapsedSeconds / 60.0
    attempted = snapshot.delivered_attempted
    avgRate = attempted / minutes if minutes > 0 else 0.0

    typer.echo("=== Sending complete ===")
    typer.echo(f"Sent: {snapshot.sent}")
    typer.echo(f"Failed: {snapshot.failed}")
    typer.echo(f"Skipped: {snapshot.skipped}")
    if snapshot.cancelled:
        typer.echo(f"Cancelled before dispatch: {snapshot.cancelled}")
    if snapshot.retried:
        typer.echo(f"Retried: {snapshot.retried}")
    typer.echo(f"Total time: {minutes:.2f} min")
    typer.echo(f"Average rate: {avgRate:.0f} events/min")
    typer.echo(f"Success rate: {formatPct(snapshot.success_rate_pct)}")

    typer.echo("Response statistics:")
    if not snapshot.status_codes:
        typer.echo("  no API calls made")
    for key, count in snapshot.status_codes.items():
        share = percent(count, snapshot.calls_total)
        typer.echo(f"  {key} {status_text(key)}: {count} calls ({formatPct(share)})")
    if snapshot.calls_total:
        typer.echo(f"  events per call: {attempted / snapshot.calls_total:.1f}")

    if not snapshot.failure_groups:
        typer.echo("No failed events")
        return

    typer.echo(f"Failure breakdown ({snapshot.failed} events):")
    failed = {o.record_index: o for o in context.final_failed()}
    for group in snapshot.failure_groups:
        typer.echo(f"  {group.key}: {group.count} events ({formatPct(group.share_pct)})")
        for index in group.record_indexes[:FAILURE_SAMPLE_SIZE]:
            outcome = failed.get(index)
            lineNo = outcome.unit.line_no if outcome and outcome.unit else "?"
            typer.echo(f"    - record {index + 1} (line {lineNo}, {outcome.call_label if outcome else '-'})")
        if group.count > FAILURE_SAMPLE_SIZE:
            typer.echo(f"    - ... and {group.count - FAILURE_SAMPLE_SIZE} more")

    tips = retry_recommendations(snapshot, ratePerMinute)
    if tips:
        typer.echo("Retry recommendations:")
        for tip in tips:
            typer.echo(f"  - {tip}")


class StopOnInterrupt:
    """
    Назначение:
        На время отправки SIGINT взводит флаг остановки контекста вместо KeyboardInterrupt.
        Текущий вызов дорабатывает, следующий не выпускается.
    """

    def __init__(self, context: RunContext, logger: logging.Logger):
        self.context = context
        self.logger = logger
        self._previous = None
        self._installed = False

    def _handle(self, signum, frame) -> None:
        if self.context.stop_requested:
            return
        self.context.request_stop()
        logEvent(self.logger, logging.WARNING, self.context.run_id, "signal", "Interrupt received, stopping after current call")
        typer.echo("Interrupt received: stopping after the current call...", err=True)

    def __enter__(self) -> "StopOnInterrupt":
        try:
            self._previous = signal.signal(signal.SIGINT, self._handle)
            self._installed = True
        except ValueError:
            # signal.signal доступен только в главном потоке
            self._installed = False
        return self

    def __exit__(self, *exc_info) -> None:
        if self._installed:
            signal.signal(signal.SIGINT, self._previous)


def runValidateCommand(ctx: typer.Context, csvPath: str | None, channel: str, settings: Settings) -> None:
    runId = ctx.obj["runId"]

    def execute(logger, report) -> int:
        try:
            config = build_run_configuration(channel, settings, offline=True)
        except ConfigurationError as exc:
            return reportFatal(logger, runId, report, "config", exc)
        printRunHeader(runId, "validate", settings, ctx.obj["sources"], config)
        report.set_meta(channel=config.channel.value)
        try:
            parsed = read_crm_csv(csvPath)
        except ParseError as exc:
            return reportFatal(logger, runId, report, "csv", exc)

        channelSpec = build_channel(config, api_version=settings.linkedin_api_version)
        prepared = prepare_run(parsed, channelSpec, config, logger=logger, run_id=runId)
        printPlan(prepared)
        exitCode = ValidateUseCase().run(prepared, len(parsed.dropped_lines), logger, runId, report)
        typer.echo(
            f"validated={prepared.total_records} valid={len(prepared.units)} "
            f"rejected={prepared.total_records - len(prepared.units)} dropped_lines={len(parsed.dropped_lines)} "
            f"warnings={report.summary.warnings_total}"
        )
        return exitCode

    runWithReport(ctx=ctx, commandName="validate", csvPath=csvPath, requiresCsv=True, runner=execute, settings=settings)


def runSendCommand(
    ctx: typer.Context,
    channel: ChannelKind,
    csvPath: str | None,
    settings: Settings,
    assumeYes: bool,
) -> None:
    runId = ctx.obj["runId"]
    commandName = f"send-{channel.value}"

    def execute(logger, report) -> int:
        try:
            config = build_run_configuration(channel, settings)
        except ConfigurationError as exc:
            return reportFatal(logger, runId, report, "config", exc)
        printRunHeader(runId, commandName, settings, ctx.obj["sources"], config)
        report.set_meta(channel=config.channel.value)

        try:
            parsed = read_crm_csv(csvPath)
        except ParseError as exc:
            return reportFatal(logger, runId, report, "csv", exc)

        channelSpec = build_channel(
            config,
            access_token=settings.linkedin_access_token or "",
            api_version=settings.linkedin_api_version,
        )
        prepared = prepare_run(parsed, channelSpec, config, logger=logger, run_id=runId)
        report.summary.dropped_lines = len(parsed.dropped_lines)
        printPlan(prepared)

        if prepared.units and not assumeYes:
            if not typer.confirm("Proceed with sending?", default=False):
                logEvent(logger, logging.INFO, runId, "send", "Sending declined by user")
                typer.echo("Operation cancelled")
                report.status = "CANCELLED"
                return 1

        client, executor = buildExecutor(settings, config.timeout_seconds)

        context = RunContext(runId, prepared.total_records)
        useCase = SendUseCase(executor, sleep=pauseSeconds, on_call=printProgress)
        started = time.monotonic()
        try:
            with StopOnInterrupt(context, logger):
                exitCode, context = useCase.run(prepared, channelSpec, logger, runId, report, context=context)
        finally:
            client.close()
        elapsed = time.monotonic() - started

        sentPath = writeSentEventsJson(
            context.aggregator.sent_outcomes(),
            settings.output_dir,
            config.channel.value,
            runId,
        )
        if sentPath:
            logEvent(logger, logging.INFO, runId, "artifacts", f"Sent events written: {sentPath}")
            report.set_context("artifacts", {"sent_events": sentPath})
            typer.echo(f"Sent events saved to {sentPath}")

        printSummary(context, elapsed, config.rate_per_minute)
        if context.stop_requested:
            report.status = "CANCELLED"
        return exitCode

    runWithReport(ctx=ctx, commandName=commandName, csvPath=csvPath, requiresCsv=True, runner=execute, settings=settings)


def runCheckApiCommand(ctx: typer.Context, settings: Settings) -> None:
    runId = ctx.obj["runId"]

    def execute(logger, report) -> int:
        printRunHeader(runId, "check-api", settings, ctx.obj["sources"], None)
        headers = {"LinkedIn-Version": settings.linkedin_api_version}
        if settings.linkedin_access_token:
            headers = linkedin_headers(settings.linkedin_access_token, settings.linkedin_api_version)
        client = HttpApiClient(
            timeoutSeconds=settings.timeout_seconds,
            retries=settings.retries,
            retryBackoffSeconds=settings.retry_backoff_seconds,
            sleep=pauseSeconds,
        )
        try:
            executor = HttpRequestExecutor(client, timeout_seconds=settings.timeout_seconds)
            exitCode, check = CheckApiUseCase(executor).run(settings.linkedin_api_url, headers, logger, runId, report)
        finally:
            client.close()
        if check.reachable:
            typer.echo(check.message)
        else:
            typer.echo(f"ERROR: {check.message}", err=True)
        return exitCode

    runWithReport(ctx=ctx, commandName="check-api", csvPath=None, requiresCsv=False, runner=execute, settings=settings)


@app.callback()
def main(
    ctx: typer.Context,
    config: str | None = typer.Option(None, "--config", help="Path to config.yml"),
    runId: str | None = typer.Option(None, "--run-id", help="Run identifier (UUID). If omitted, generated."),
    logLevel: str | None = typer.Option(None, "--log-level", help="Log level: ERROR|WARN|INFO|DEBUG"),
    logDir: str | None = typer.Option(None, "--log-dir", help="Directory for logs."),
    reportDir: str | None = typer.Option(None, "--report-dir", help="Directory for reports."),
    outputDir: str | None = typer.Option(None, "--output-dir", help="Directory for sent-events dumps."),
    timeoutSeconds: float | None = typer.Option(None, "--timeout-seconds", help="HTTP timeout in seconds"),
    retries: int | None = typer.Option(None, "--retries", help="Client-level retry attempts for 429/5xx/network"),
    retryBackoffSeconds: float | None = typer.Option(None, "--retry-backoff-seconds", help="Base backoff for retries"),
    reportItemsLimit: int | None = typer.Option(None, "--report-items-limit", help="Limit report items stored"),
):
    """
    Назначение:
        Глобальная инициализация CLI:
        - генерирует/принимает run_id
        - загружает настройки (CLI > ENV > config > defaults)
        - создаёт каталоги log/report
        - сохраняет всё в ctx.obj для подкоманд
    """
    if not runId:
        runId = generate_run_id()

    cliOverrides = {
        "log_level": logLevel,
        "log_dir": logDir,
        "report_dir": reportDir,
        "output_dir": outputDir,
        "timeout_seconds": timeoutSeconds,
        "retries": retries,
        "retry_backoff_seconds": retryBackoffSeconds,
        "report_items_limit": reportItemsLimit,
    }
    try:
        loaded: LoadedSettings = load_settings(config_path=config, cli_overrides=cliOverrides)
        mapLogLevel(loaded.settings.log_level)
    except (ConfigurationError, ValueError) as exc:
        typer.echo(f"ERROR: {exc}", err=True)
        raise typer.Exit(code=2)

    ensureDir(loaded.settings.log_dir)
    ensureDir(loaded.settings.report_dir)

    ctx.obj = {
        "runId": runId,
        "settings": loaded.settings,
        "sources": loaded.sources_used,
    }


@app.command("validate")
def validate(
    ctx: typer.Context,
    csv: str | None = typer.Option(None, "--csv", help="Path to CRM CSV export"),
    channel: str = typer.Option("webhook", "--channel", help="Payload shape to build: webhook|linkedin"),
    conversionId: str | None = typer.Option(None, "--conversion-id", help="LinkedIn conversion rule id"),
    useConversionTime: bool | None = typer.Option(
        None,
        "--use-conversion-time/--no-use-conversion-time",
        help="Use the conversionTime column (90-day window)",
    ),
    resetOldTimestamps: bool | None = typer.Option(
        None,
        "--reset-old-timestamps/--no-reset-old-timestamps",
        help="Replace out-of-window conversionTime with current time instead of skipping",
    ),
):
    settings = applyOverrides(
        ctx.obj["settings"],
        linkedin_conversion_id=conversionId,
        use_conversion_time=useConversionTime,
        reset_old_timestamps=resetOldTimestamps,
    )
    runValidateCommand(ctx, csv, channel, settings)


@sendApp.command("webhook")
def sendWebhook(
    ctx: typer.Context,
    csv: str | None = typer.Option(None, "--csv", help="Path to CRM CSV export"),
    url: str | None = typer.Option(None, "--url", help="Webhook URL"),
    rate: int | None = typer.Option(None, "--rate", help="Requests per minute (1-25)"),
    useConversionTime: bool | None = typer.Option(
        None,
        "--use-conversion-time/--no-use-conversion-time",
        help="Use the conversionTime column (90-day window)",
    ),
    resetOldTimestamps: bool | None = typer.Option(
        None,
        "--reset-old-timestamps/--no-reset-old-timestamps",
        help="Replace out-of-window conversionTime with current time instead of skipping",
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    settings = applyOverrides(
        ctx.obj["settings"],
        webhook_url=url,
        webhook_rate=rate,
        use_conversion_time=useConversionTime,
        reset_old_timestamps=resetOldTimestamps,
    )
    runSendCommand(ctx, ChannelKind.WEBHOOK, csv, settings, yes)


@sendApp.command("linkedin")
def sendLinkedin(
    ctx: typer.Context,
    csv: str | None = typer.Option(None, "--csv", help="Path to CRM CSV export"),
    conversionId: str | None = typer.Option(None, "--conversion-id", help="LinkedIn conversion rule id"),
    token: str | None = typer.Option(None, "--token", help="LinkedIn access token (avoid; use env/file)"),
    tokenFile: str | None = typer.Option(None, "--token-file", help="Read LinkedIn access token from file"),
    apiVersion: str | None = typer.Option(None, "--api-version", help="LinkedIn-Version header (YYYYMM)"),
    url: str | None = typer.Option(None, "--url", help="Conversion events endpoint"),
    rate: int | None = typer.Option(None, "--rate", help="API calls per minute (1-120)"),
    batchSize: int | None = typer.Option(None, "--batch-size", help="Events per API call (1-1000)"),
    useConversionTime: bool | None = typer.Option(
        None,
        "--use-conversion-time/--no-use-conversion-time",
        help="Use the conversionTime column (90-day window)",
    ),
    resetOldTimestamps: bool | None = typer.Option(
        None,
        "--reset-old-timestamps/--no-reset-old-timestamps",
        help="Replace out-of-window conversionTime with current time instead of skipping",
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    try:
        accessToken = resolveToken(token, tokenFile)
    except ConfigurationError as exc:
        typer.echo(f"ERROR: {exc}", err=True)
        raise typer.Exit(code=2)
    settings = applyOverrides(
        ctx.obj["settings"],
        linkedin_conversion_id=conversionId,
        linkedin_access_token=accessToken,
        linkedin_api_version=apiVersion,
        linkedin_api_url=url,
        linkedin_rate=rate,
        linkedin_batch_size=batchSize,
        use_conversion_time=useConversionTime,
        reset_old_timestamps=resetOldTimestamps,
    )
    runSendCommand(ctx, ChannelKind.LINKEDIN, csv, settings, yes)


@app.command("check-api")
def checkApi(
    ctx: typer.Context,
    token: str | None = typer.Option(None, "--token", help="LinkedIn access token (avoid; use env/file)"),
    tokenFile: str | None = typer.Option(None, "--token-file", help="Read LinkedIn access token from file"),
    apiVersion: str | None = typer.Option(None, "--api-version", help="LinkedIn-Version header (YYYYMM)"),
    url: str | None = typer.Option(None, "--url", help="Conversion events endpoint"),
):
    try:
        accessToken = resolveToken(token, tokenFile)
    except ConfigurationError as exc:
        typer.echo(f"ERROR: {exc}", err=True)
        raise typer.Exit(code=2)
    settings = applyOverrides(
        ctx.obj["settings"],
        linkedin_access_token=accessToken,
        linkedin_api_version=apiVersion,
        linkedin_api_url=url,
    )
    runCheckApiCommand(ctx, settings)


app.add_typer(sendApp, name="send")
