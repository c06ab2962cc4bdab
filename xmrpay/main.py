"""
Listener entry point.

Composition root: wires settings, RPC clients, stores, locks, publishers,
the reconciler and the scanner, then runs the callback server, the daemon
availability poll and the scanner loop until SIGINT/SIGTERM.
"""

import asyncio
import signal
import sys
from dataclasses import dataclass
from datetime import UTC, datetime

import redis.asyncio as redis
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncEngine

from xmrpay import __version__
from xmrpay.config.database import create_engine, create_session_maker, init_models
from xmrpay.config.settings import Settings, get_settings
from xmrpay.repositories import SqlInvoiceStore, SqlPaymentStore
from xmrpay.rpc import MoneroRpcProvider
from xmrpay.services import EventDrivenScanner, PaymentReconciler
from xmrpay.services.event_bus import (
    CompositePublisher,
    EventAggregator,
    RedisNotificationPublisher,
)
from xmrpay.services.events import DaemonAvailabilityChanged
from xmrpay.utils.locks import LocalInvoiceLocks, RedisInvoiceLocks
from xmrpay.utils.logging import setup_logging
from xmrpay.web.callbacks import create_app, start_callback_server, stop_callback_server


@dataclass
class Listener:
    """Wired listener components."""

    settings: Settings
    engine: AsyncEngine
    provider: MoneroRpcProvider
    aggregator: EventAggregator
    reconciler: PaymentReconciler
    scanner: EventDrivenScanner
    redis_client: redis.Redis | None = None

    async def close(self) -> None:
        await self.provider.close()
        await self.engine.dispose()
        if self.redis_client is not None:
            await self.redis_client.aclose()


def create_redis_client(settings: Settings) -> redis.Redis:
    return redis.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        password=settings.redis_password,
        db=settings.redis_db,
        decode_responses=True,
    )


def build_listener(settings: Settings, use_redis_locks: bool | None = None) -> Listener:
    """
    Wire all listener components.

    Args:
        settings: Application settings
        use_redis_locks: Override settings.use_redis_locks

    Returns:
        Listener with every component constructed, nothing started
    """
    engine = create_engine(settings.database_url, echo=settings.database_echo)
    session_maker = create_session_maker(engine)

    provider = MoneroRpcProvider(
        settings.get_monero_like_configuration(), timeout=settings.rpc_timeout
    )

    redis_locks = settings.use_redis_locks if use_redis_locks is None else use_redis_locks
    redis_client = None
    if redis_locks or settings.publish_to_redis:
        redis_client = create_redis_client(settings)

    aggregator = EventAggregator()
    publisher = aggregator
    if settings.publish_to_redis:
        publisher = CompositePublisher(
            aggregator,
            RedisNotificationPublisher(redis_client, settings.notification_channel),
        )

    if redis_locks:
        locks = RedisInvoiceLocks(
            redis_client,
            timeout=settings.invoice_lock_timeout,
            blocking_timeout=settings.invoice_lock_blocking_timeout,
        )
    else:
        locks = LocalInvoiceLocks()

    reconciler = PaymentReconciler(
        wallet_rpc_clients=provider.wallet_rpc_clients,
        invoice_store=SqlInvoiceStore(session_maker),
        payment_store=SqlPaymentStore(session_maker),
        publisher=publisher,
        locks=locks,
    )
    scanner = EventDrivenScanner(reconciler, publisher, provider.crypto_codes)

    return Listener(
        settings=settings,
        engine=engine,
        provider=provider,
        aggregator=aggregator,
        reconciler=reconciler,
        scanner=scanner,
        redis_client=redis_client,
    )


async def run(settings: Settings) -> None:
    """Run the listener until a stop signal arrives."""
    listener = build_listener(settings)
    scanner = listener.scanner
    provider = listener.provider

    if settings.database_auto_create:
        await init_models(listener.engine)

    provider.on_availability_change(
        lambda crypto_code, available: scanner.submit(
            DaemonAvailabilityChanged(crypto_code=crypto_code, available=available)
        )
    )

    scanner_task = scanner.start()
    runner = await start_callback_server(
        create_app(scanner, settings.callback_prefix),
        host=settings.callback_host,
        port=settings.callback_port,
    )

    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        provider.update_all,
        "interval",
        seconds=settings.daemon_poll_interval,
        id="daemon_availability",
        name="Daemon availability poll",
        max_instances=1,
        coalesce=True,
        next_run_time=datetime.now(UTC),
    )
    scheduler.start()

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    logger.info(f"xmrpay listener {__version__} running")
    try:
        stop_waiter = asyncio.create_task(stop_event.wait())
        await asyncio.wait({stop_waiter, scanner_task}, return_when=asyncio.FIRST_COMPLETED)
        stop_waiter.cancel()
    finally:
        logger.info("Shutting down...")
        scheduler.shutdown(wait=False)
        await stop_callback_server(runner)
        await scanner.stop()
        await listener.close()
        logger.info("Shutdown complete")


def main() -> None:
    """Console script entry point."""
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_file)

    if not settings.get_monero_like_configuration().items:
        logger.error("No Monero-like currency configured (XMR_DAEMON_URI / XMR_WALLET_DAEMON_URI)")
        sys.exit(1)

    asyncio.run(run(settings))


if __name__ == "__main__":
    main()
