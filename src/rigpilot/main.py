"""Entry point for the NiceHash rig autopilot.

Wires all components together, optionally embeds the FastAPI dashboard,
and starts the orchestrator. When the dashboard is enabled (default),
the autopilot and dashboard share a single asyncio event loop via uvicorn's
programmatic API and FastAPI's lifespan context manager.

Handles SIGINT/SIGTERM for graceful shutdown.

Component wiring order (in _build_components):
1. NiceHashClient (signed API v2 transport)
2. EventBus (rig and rate events)
3. BitcoinRateCache (blockchain.info ticker)
4. AlgorithmDirectory (algorithm titles)
5. StateDatabase + RigStateStore (optional persistence)
6. Orchestrator (per-rig control loops)
7. PriceWatcher (BTC price change alerts, follows the tariff currency)
"""

import asyncio
import signal
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI

from rigpilot.config import AppSettings
from rigpilot.data.database import StateDatabase
from rigpilot.data.store import RigStateStore
from rigpilot.events import EventBus
from rigpilot.logging import get_logger, setup_logging
from rigpilot.market_data.algorithms import AlgorithmDirectory
from rigpilot.market_data.price_watch import PriceWatcher
from rigpilot.market_data.rate_cache import BitcoinRateCache
from rigpilot.nicehash.client import NiceHashClient
from rigpilot.orchestrator import Orchestrator


async def _build_components(settings: AppSettings) -> dict[str, Any]:
    """Build all components from settings.

    Note: Does NOT open the state database -- that happens in the lifespan
    (dashboard mode) or run() (headless mode).

    Args:
        settings: Application-wide settings.

    Returns:
        Dict mapping component names to instances.
    """
    logger = get_logger("rigpilot.main")

    # 1. Create NiceHash client
    rig_api = NiceHashClient(settings.nicehash)
    if not settings.nicehash.api_key.get_secret_value():
        logger.warning(
            "no_api_keys_configured",
            note="Rig details and commands will be rejected by NiceHash.",
        )
    if settings.tariff.cost_per_kwh is None:
        logger.warning(
            "no_tariff_configured",
            note="Profitability is indeterminate; the autopilot will never stop a rig.",
        )

    # 2. Create event bus
    events = EventBus()

    # 3. Create BTC rate cache
    rate_cache = BitcoinRateCache(
        ticker_url=settings.rate.ticker_url,
        refresh_interval=settings.rate.refresh_interval,
    )

    # 4. Create algorithm directory
    algorithms = AlgorithmDirectory(
        rig_api, refresh_interval=settings.autopilot.algorithm_refresh_interval
    )

    # 5. Create persistence
    database = None
    store = None
    if settings.storage.enabled:
        database = StateDatabase(settings.storage.db_path)
        store = RigStateStore(database)

    # 6-7. Create orchestrator and price watcher (watcher follows the live tariff currency)
    orchestrator = Orchestrator(
        settings=settings,
        rig_api=rig_api,
        rate_cache=rate_cache,
        algorithms=algorithms,
        events=events,
        store=store,
        price_watcher=None,  # Set after orchestrator created (circular ref)
    )
    price_watcher = PriceWatcher(
        rate_cache,
        events,
        currency_provider=lambda: orchestrator.current_tariff().currency,
        threshold_pct=settings.rate.change_alert_pct,
        interval=settings.rate.watch_interval,
    )
    orchestrator.set_price_watcher(price_watcher)

    return {
        "rig_api": rig_api,
        "events": events,
        "rate_cache": rate_cache,
        "algorithms": algorithms,
        "database": database,
        "store": store,
        "orchestrator": orchestrator,
        "price_watcher": price_watcher,
    }


def _setup_signal_handlers(orchestrator: Orchestrator) -> None:
    """Register SIGINT/SIGTERM to stop the orchestrator gracefully.

    Must be called after the asyncio event loop is running.
    """
    logger = get_logger("rigpilot.main")
    loop = asyncio.get_running_loop()

    def _graceful_handler() -> None:
        logger.info("graceful_shutdown_signal")
        asyncio.create_task(orchestrator.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _graceful_handler)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage component lifecycle within the FastAPI application.

    On startup: stores components on app.state, opens the state database,
    subscribes the WebSocket hub to events, starts the orchestrator and the
    dashboard update loop as background tasks.

    On shutdown: reverses all of the above.
    """
    from rigpilot.dashboard.update_loop import dashboard_update_loop

    logger = get_logger("rigpilot.main")
    settings = app.state.settings
    components = app.state.components

    app.state.orchestrator = components["orchestrator"]
    app.state.rate_cache = components["rate_cache"]
    app.state.price_watcher = components["price_watcher"]
    app.state.update_interval = settings.dashboard.update_interval

    _setup_signal_handlers(components["orchestrator"])

    if components["database"] is not None:
        await components["database"].connect()

    events: EventBus = components["events"]
    events.subscribe(app.state.hub.on_event)

    bot_task = asyncio.create_task(components["orchestrator"].start())
    update_task = asyncio.create_task(dashboard_update_loop(app))

    logger.info("lifespan_started", rigs=settings.nicehash.rig_ids or "discover")

    yield

    update_task.cancel()
    try:
        await update_task
    except asyncio.CancelledError:
        pass

    await components["orchestrator"].stop()
    try:
        await bot_task
    except asyncio.CancelledError:
        pass

    events.unsubscribe(app.state.hub.on_event)
    await components["rig_api"].close()
    if components["database"] is not None:
        await components["database"].close()

    logger.info("rigpilot_stopped")


async def run() -> None:
    """Run the rig autopilot.

    When dashboard is enabled (DASHBOARD_ENABLED=true, the default):
    - Creates the FastAPI dashboard app with lifespan
    - Runs autopilot and dashboard in a single asyncio event loop via uvicorn

    When dashboard is disabled (DASHBOARD_ENABLED=false):
    - Runs the orchestrator directly without a web server
    """
    # 1. Load settings
    settings = AppSettings()

    # 2. Setup logging
    setup_logging(settings.log_level)
    logger = get_logger("rigpilot.main")

    components = await _build_components(settings)

    if settings.dashboard.enabled:
        from rigpilot.dashboard.app import create_dashboard_app

        app = create_dashboard_app(lifespan=lifespan)
        app.state.settings = settings
        app.state.components = components

        logger.info(
            "starting_with_dashboard",
            host=settings.dashboard.host,
            port=settings.dashboard.port,
        )

        config = uvicorn.Config(
            app,
            host=settings.dashboard.host,
            port=settings.dashboard.port,
            log_level="warning",  # Suppress uvicorn access logs
        )
        server = uvicorn.Server(config)
        await server.serve()
    else:
        _setup_signal_handlers(components["orchestrator"])

        logger.info(
            "starting_without_dashboard",
            tariff=str(settings.tariff.cost_per_kwh),
            currency=settings.tariff.currency,
            min_profitability=str(settings.autopilot.min_profitability),
        )

        try:
            if components["database"] is not None:
                await components["database"].connect()
            await components["orchestrator"].start()
        finally:
            await components["rig_api"].close()
            if components["database"] is not None:
                await components["database"].close()
            logger.info("rigpilot_stopped")


def main() -> None:
    """Synchronous entry point."""
    asyncio.run(run())


if __name__ == "__main__":
    main()
