from __future__ import annotations

import logging
import sqlite3
import time
from pathlib import Path

import typer

from feedsync.common.run_id import generate_run_id
from feedsync.common.sanitize import maskSecret
from feedsync.common.scheduling import InlineTaskRunner, PollingTask
from feedsync.common.time import getDurationMs, msToIso
from feedsync.config import Settings, loadSettings
from feedsync.domain.cache_key import CACHE_KEY_PREFIX, is_feed_cache_key
from feedsync.domain.models import ActionKind
from feedsync.domain.pagination import entity_id
from feedsync.domain.resources import RESOURCE_FACTORIES, make_resource
from feedsync.errors import StorageError
from feedsync.infra.cache.db import getCacheDbPath, openCacheDb
from feedsync.infra.cache.memory_cache import MemoryCache
from feedsync.infra.cache.sqlite_engine import SqliteEngine
from feedsync.infra.cache.sqlite_store import SqlitePersistentStore
from feedsync.infra.http.feed_client import FeedApiClient
from feedsync.infra.logging.setup import closeCommandLogger, createCommandLogger, logEvent
from feedsync.infra.ledger.action_ledger import ActionLedger
from feedsync.usecases.feed_controller import FeedController
from feedsync.usecases.feed_session import FeedSession

app = typer.Typer(no_args_is_help=True, add_completion=False)
feedApp = typer.Typer(no_args_is_help=True)
actionApp = typer.Typer(no_args_is_help=True)
cacheApp = typer.Typer(no_args_is_help=True)
ledgerApp = typer.Typer(no_args_is_help=True)

TITLE_FIELDS = ("title", "name", "text", "username")


def ensureDir(path: str) -> None:
    Path(path).mkdir(parents=True, exist_ok=True)


def requireApi(settings: Settings) -> None:
    """
    Назначение:
        Проверяет наличие base_url для команд, которым нужен REST доступ.
    Поведение:
        - Если base_url не задан - exit code 2.
    """
    if not settings.base_url:
        typer.echo("ERROR: missing API settings: base_url", err=True)
        raise typer.Exit(code=2)


def printRunHeader(runId: str, command: str, settings: Settings, sources: list[str]) -> None:
    """Печатает безопасную сводку параметров запуска (без секретов)."""
    typer.echo(
        f"run_id={runId} command={command} "
        f"base_url={settings.base_url} app_secret={maskSecret(settings.app_secret)} "
        f"sources={sources} log_level={settings.log_level}"
    )


def openStore(settings: Settings) -> tuple[SqliteEngine, SqlitePersistentStore]:
    conn = openCacheDb(getCacheDbPath(settings.cache_dir))
    engine = SqliteEngine(conn)
    try:
        store = SqlitePersistentStore(engine)
    except StorageError:
        engine.close()
        raise
    return engine, store


def buildClient(settings: Settings) -> FeedApiClient:
    return FeedApiClient(
        baseUrl=settings.base_url,
        appSecret=settings.app_secret,
        timeoutSeconds=settings.timeout_seconds,
        retries=settings.retries,
        retryBackoffSeconds=settings.retry_backoff_seconds,
    )


def buildSession(settings: Settings, client: FeedApiClient, store: SqlitePersistentStore) -> FeedSession:
    """
    Назначение:
        Сессия для разовой команды: задачи выполняются синхронно (InlineTaskRunner),
        поэтому к возврату из mount()/load_more() ответ уже применён.
    """
    return FeedSession(
        client=client,
        memory=MemoryCache(),
        store=store,
        runner=InlineTaskRunner(),
        poller_factory=PollingTask,
        poll_interval_seconds=settings.poll_interval_seconds,
        ledger_capacity=settings.ledger_capacity,
        fingerprint=settings.device_fingerprint,
        id_field=settings.id_field,
    )


def describeItem(item, idField: str) -> str:
    title = next((str(item[f]) for f in TITLE_FIELDS if item.get(f)), "")
    flags = "".join(flag[0].upper() for flag in ("liked", "viewed") if item.get(flag))
    counters = f"likes={_count(item.get('likes'))} views={_count(item.get('views'))}"
    return f"{entity_id(item, idField)}\t{counters}\t{flags or '-'}\t{title}"


def _count(value) -> int:
    if isinstance(value, list):
        return len(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(value)
    return 0


def printFeed(controller: FeedController) -> None:
    connectivity = controller.coordinator.connectivity
    observable = controller.coordinator.observable(controller.resource.cache_key(1))
    storedAt = observable.snapshot.stored_at if observable is not None else None
    typer.echo(
        f"kind={controller.resource.kind} pages={controller.cursor} items={len(controller.items)} "
        f"has_more={controller.has_more} state={connectivity.state.value} "
        f"refresh_failed={controller.refresh_failed} cached_at={msToIso(storedAt)}"
    )
    for item in controller.items:
        typer.echo(describeItem(item, controller.resource.id_field))


def runCommand(ctx: typer.Context, commandName: str, requiresApiAccess: bool, runner) -> None:
    """
    Назначение:
        Унифицированная обвязка выполнения команд:
        - создаёт логгер + файл лога
        - валидирует обязательные настройки API
        - логирует старт/финиш с длительностью
    Поведение:
        - runner(logger) возвращает exit code; ненулевой код завершает процесс с ним.
    """
    runId = ctx.obj["runId"]
    settings: Settings = ctx.obj["settings"]
    sources = ctx.obj["sources"]

    startMonotonic = time.monotonic()
    logger, logFilePath = createCommandLogger(
        commandName=commandName,
        logDir=settings.log_dir,
        runId=runId,
        logLevel=settings.log_level,
    )

    exitCode: int | None = None
    try:
        logEvent(logger, logging.INFO, runId, "core", "Command started")
        printRunHeader(runId, commandName, settings, sources)

        if requiresApiAccess:
            try:
                requireApi(settings)
            except typer.Exit:
                logEvent(logger, logging.ERROR, runId, "config", "Missing API settings")
                exitCode = 2
                return

        exitCode = runner(logger)
    finally:
        durationMs = getDurationMs(startMonotonic, time.monotonic())
        logEvent(
            logger,
            logging.INFO,
            runId,
            "core",
            f"Command finished exit_code={exitCode or 0} duration_ms={durationMs} log_file={logFilePath}",
        )
        closeCommandLogger(logger)
        if exitCode:
            raise typer.Exit(code=exitCode)


def withStore(ctx: typer.Context, logger, execute) -> int:
    """Открывает персистентное хранилище на время execute(store); ошибки открытия -> exit code 2."""
    settings: Settings = ctx.obj["settings"]
    runId = ctx.obj["runId"]
    try:
        engine, store = openStore(settings)
    except (sqlite3.Error, StorageError) as exc:
        logEvent(logger, logging.ERROR, runId, "cache", f"Failed to open cache DB: {exc}")
        typer.echo("ERROR: failed to open cache DB (see logs)", err=True)
        return 2
    try:
        return execute(store)
    finally:
        engine.close()


def runFeedShowCommand(ctx: typer.Context, kind: str, resourceId: str | None, pages: int) -> None:
    settings: Settings = ctx.obj["settings"]
    runId = ctx.obj["runId"]

    def execute(logger) -> int:
        try:
            resource = make_resource(kind, resourceId, settings.page_size, id_field=settings.id_field)
        except ValueError as exc:
            typer.echo(f"ERROR: {exc}", err=True)
            return 2

        def withSession(store) -> int:
            client = buildClient(settings)
            session = buildSession(settings, client, store)
            try:
                controller = session.open_feed(resource)
                controller.mount()
                while controller.cursor < pages and controller.load_more():
                    pass
                printFeed(controller)
                logEvent(
                    logger,
                    logging.INFO,
                    runId,
                    "feed",
                    f"Feed shown kind={kind} pages={controller.cursor} items={len(controller.items)}",
                )
                if controller.is_offline and not controller.items:
                    typer.echo("ERROR: feed is offline and no cached data is available", err=True)
                    return 1
                if controller.is_offline:
                    typer.echo("WARNING: offline, showing cached data", err=True)
                return 0
            finally:
                session.close()
                client.close()

        return withStore(ctx, logger, withSession)

    runCommand(ctx, commandName="feed-show", requiresApiAccess=True, runner=execute)


def runSearchCommand(ctx: typer.Context, query: str) -> None:
    settings: Settings = ctx.obj["settings"]
    runId = ctx.obj["runId"]

    def execute(logger) -> int:
        def withSession(store) -> int:
            client = buildClient(settings)
            session = buildSession(settings, client, store)
            search = session.open_search(debounce_seconds=0, page_size=settings.page_size)
            try:
                search.set_query(query)
                controller = search.controller
                if controller is None:
                    typer.echo(f"query too short (min {search.min_query_length} chars)")
                    return 0
                typer.echo(f"users={len(search.users)}")
                printFeed(controller)
                logEvent(logger, logging.INFO, runId, "search", f"Search done items={len(search.items)}")
                if controller.is_offline and not controller.items:
                    typer.echo("ERROR: search is offline and no cached data is available", err=True)
                    return 1
                return 0
            finally:
                search.close()
                session.close()
                client.close()

        return withStore(ctx, logger, withSession)

    runCommand(ctx, commandName="search", requiresApiAccess=True, runner=execute)


def runActionCommand(ctx: typer.Context, kind: ActionKind, entityId: str) -> None:
    settings: Settings = ctx.obj["settings"]
    runId = ctx.obj["runId"]

    def execute(logger) -> int:
        def withSession(store) -> int:
            client = buildClient(settings)
            session = buildSession(settings, client, store)
            try:
                accepted = session.dispatcher.dispatch({settings.id_field: entityId}, kind)
                status = "dispatched" if accepted else "already-fired"
                typer.echo(f"action={kind.api_action} entity={entityId} status={status}")
                logEvent(logger, logging.INFO, runId, "action", f"Action {kind.value} {entityId} {status}")
                return 0
            finally:
                session.close()
                client.close()

        return withStore(ctx, logger, withSession)

    runCommand(ctx, commandName=f"action-{kind.api_action}", requiresApiAccess=True, runner=execute)


def runCacheStatusCommand(ctx: typer.Context) -> None:
    def execute(logger) -> int:
        def status(store: SqlitePersistentStore) -> int:
            keys = [k for k in store.list_keys() if is_feed_cache_key(k)]
            ledger = ActionLedger(store, capacity=ctx.obj["settings"].ledger_capacity)
            typer.echo(f"schema_version={store.schema_version} entries={len(keys)} ledger_tokens={len(ledger)}")
            for key in keys:
                typer.echo(key)
            return 0

        return withStore(ctx, logger, status)

    runCommand(ctx, commandName="cache-status", requiresApiAccess=False, runner=execute)


def runCacheClearCommand(ctx: typer.Context) -> None:
    runId = ctx.obj["runId"]

    def execute(logger) -> int:
        def clear(store: SqlitePersistentStore) -> int:
            try:
                cleared = store.delete_prefix(CACHE_KEY_PREFIX)
            except StorageError as exc:
                logEvent(logger, logging.ERROR, runId, "cache", f"Cache clear failed: {exc.message}")
                typer.echo("ERROR: cache clear failed (see logs)", err=True)
                return 1
            logEvent(logger, logging.INFO, runId, "cache", f"Cache cleared entries={cleared}")
            typer.echo(f"cleared={cleared}")
            return 0

        return withStore(ctx, logger, clear)

    runCommand(ctx, commandName="cache-clear", requiresApiAccess=False, runner=execute)


def runLedgerListCommand(ctx: typer.Context) -> None:
    def execute(logger) -> int:
        def listTokens(store: SqlitePersistentStore) -> int:
            ledger = ActionLedger(store, capacity=ctx.obj["settings"].ledger_capacity)
            tokens = ledger.tokens()
            typer.echo(f"tokens={len(tokens)} capacity={ledger.capacity}")
            for token in tokens:
                typer.echo(f"{token.entity_id}\t{token.kind.value}")
            return 0

        return withStore(ctx, logger, listTokens)

    runCommand(ctx, commandName="ledger-list", requiresApiAccess=False, runner=execute)


@app.callback()
def main(
    ctx: typer.Context,
    config: str | None = typer.Option(None, "--config", help="Path to config.yml"),
    runId: str | None = typer.Option(None, "--run-id", help="Run identifier (UUID). If omitted, generated."),
    logLevel: str | None = typer.Option(None, "--log-level", help="Log level: ERROR|WARN|INFO|DEBUG"),
    logDir: str | None = typer.Option(None, "--log-dir", help="Directory for logs."),
    cacheDir: str | None = typer.Option(None, "--cache-dir", help="Directory for the persistent cache."),
    baseUrl: str | None = typer.Option(None, "--base-url", help="Feed API base URL"),
    appSecret: str | None = typer.Option(None, "--app-secret", help="App secret header value (avoid; use env)"),
    fingerprint: str | None = typer.Option(None, "--fingerprint", help="Device fingerprint sent with actions"),
    idField: str | None = typer.Option(None, "--id-field", help="Entity id field name"),
    pageSize: int | None = typer.Option(None, "--page-size", help="Page size for feed pagination"),
    pollIntervalSeconds: float | None = typer.Option(None, "--poll-interval-seconds", help="Live feed poll interval"),
    ledgerCapacity: int | None = typer.Option(None, "--ledger-capacity", help="Max remembered actions"),
    timeoutSeconds: float | None = typer.Option(None, "--timeout-seconds", help="API timeout in seconds"),
    retries: int | None = typer.Option(None, "--retries", help="Retry attempts for API calls"),
    retryBackoffSeconds: float | None = typer.Option(None, "--retry-backoff-seconds", help="Base backoff for retries"),
):
    """
    Назначение:
        Глобальная инициализация CLI:
        - генерирует/принимает run_id
        - загружает настройки (CLI > ENV > config > defaults)
        - создаёт каталоги log/cache
        - сохраняет всё в ctx.obj для подкоманд
    """
    if not runId:
        runId = generate_run_id()

    cliOverrides = {
        "base_url": baseUrl,
        "app_secret": appSecret,
        "device_fingerprint": fingerprint,
        "id_field": idField,
        "log_level": logLevel,
        "log_dir": logDir,
        "cache_dir": cacheDir,
        "page_size": pageSize,
        "poll_interval_seconds": pollIntervalSeconds,
        "ledger_capacity": ledgerCapacity,
        "timeout_seconds": timeoutSeconds,
        "retries": retries,
        "retry_backoff_seconds": retryBackoffSeconds,
    }
    try:
        loaded = loadSettings(config_path=config, cli_overrides=cliOverrides)
    except ValueError as exc:
        typer.echo(f"ERROR: invalid configuration: {exc}", err=True)
        raise typer.Exit(code=2)

    ensureDir(loaded.settings.log_dir)
    ensureDir(loaded.settings.cache_dir)

    ctx.obj = {
        "runId": runId,
        "settings": loaded.settings,
        "sources": loaded.sources_used,
        "configPath": config,
    }


@feedApp.command("show")
def feedShow(
    ctx: typer.Context,
    kind: str = typer.Option("feed", "--kind", help=f"Feed kind: {'|'.join(RESOURCE_FACTORIES)}"),
    resourceId: str | None = typer.Option(None, "--id", help="Category name, author id, clan tag or search query"),
    pages: int = typer.Option(1, "--pages", min=1, help="Number of pages to load"),
):
    runFeedShowCommand(ctx, kind=kind, resourceId=resourceId, pages=pages)


@app.command("search")
def search(
    ctx: typer.Context,
    query: str = typer.Argument(..., help="Search text (min 2 chars)"),
):
    runSearchCommand(ctx, query=query)


@actionApp.command("like")
def actionLike(ctx: typer.Context, entityId: str = typer.Argument(..., help="Entity id")):
    runActionCommand(ctx, ActionKind.LIKED, entityId)


@actionApp.command("view")
def actionView(ctx: typer.Context, entityId: str = typer.Argument(..., help="Entity id")):
    runActionCommand(ctx, ActionKind.VIEWED, entityId)


@cacheApp.command("status")
def cacheStatus(ctx: typer.Context):
    runCacheStatusCommand(ctx)


@cacheApp.command("clear")
def cacheClear(ctx: typer.Context):
    runCacheClearCommand(ctx)


@ledgerApp.command("list")
def ledgerList(ctx: typer.Context):
    runLedgerListCommand(ctx)


app.add_typer(feedApp, name="feed")
app.add_typer(actionApp, name="action")
app.add_typer(cacheApp, name="cache")
app.add_typer(ledgerApp, name="ledger")


if __name__ == "__main__":
    app()
