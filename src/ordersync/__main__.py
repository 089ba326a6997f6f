"""
Main entrypoint for the legacy order sync agent.

Usage:
    python -m ordersync           # run the agent with ORDERSYNC_SERVER_URL / ORDERSYNC_TOKEN
    python -m ordersync once      # one poll cycle, then exit (diagnostics)
    python -m ordersync serve     # local control API for the host application
"""
import asyncio
import logging
import sys

from ordersync.config import get_settings

settings = get_settings()
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


async def _run_agent() -> None:
    from ordersync.sync.engine import EngineState, build_sync_engine

    engine = build_sync_engine(settings)
    if not settings.server_url or not settings.token:
        logger.info("No server URL/token configured — orders will be queued locally.")

    state = await engine.start(settings.server_url, settings.token)
    if state is not EngineState.RUNNING:
        logger.error("Sync agent did not start (legacy store at %s).", settings.legacy_db_path)
        sys.exit(1)

    logger.info("Sync agent is running. Press Ctrl+C to stop.")
    try:
        await asyncio.Event().wait()
    except (KeyboardInterrupt, SystemExit, asyncio.CancelledError):
        logger.info("Shutting down...")
    finally:
        engine.stop()
        logger.info("Goodbye.")


async def _run_once() -> None:
    from ordersync.sync.engine import build_sync_engine

    engine = build_sync_engine(settings)
    if not engine.reader.is_available():
        logger.error("Legacy store not found at %s.", settings.legacy_db_path)
        sys.exit(1)

    engine.update_server_url(settings.server_url)
    await engine.update_token(settings.token)
    result = await engine.poll_once()
    logger.info(
        "Cycle %s: %d rows, %d delivered, %d skipped, %d queued (queue size %d)",
        "ok" if result.ok else f"failed ({result.error})",
        result.rows_read, result.delivered, result.skipped, result.queued,
        len(engine.queue),
    )


def _run_api() -> None:
    import uvicorn

    uvicorn.run(
        "ordersync.api.main:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
    )


if __name__ == "__main__":
    command = sys.argv[1] if len(sys.argv) > 1 else "run"
    if command == "serve":
        _run_api()
    elif command == "once":
        asyncio.run(_run_once())
    else:
        asyncio.run(_run_agent())
