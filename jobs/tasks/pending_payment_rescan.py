"""
Pending payment rescan task.

Runs a bulk reconciliation of every pending invoice outside the listener
process, e.g. after a wallet restore. Invoice locks are taken in Redis so
the rescan never races the listener on the same invoice.
"""

import dramatiq
from loguru import logger

from jobs.async_runner import async_actor
from jobs.broker import broker
from xmrpay.config.settings import Settings, get_settings
from xmrpay.main import build_listener
from xmrpay.services.payment_reconciler import ReconcileResult
from xmrpay.utils.exceptions import ListenerError


async def rescan_pending_async(
    crypto_code: str, settings: Settings | None = None
) -> ReconcileResult:
    """
    Reconcile every pending invoice of a currency.

    Args:
        crypto_code: Currency to rescan
        settings: Settings override (default: environment)

    Returns:
        ReconcileResult of the pass

    Raises:
        ListenerError: If the currency is not configured
    """
    crypto_code = crypto_code.upper()
    listener = build_listener(settings or get_settings(), use_redis_locks=True)
    try:
        if not listener.scanner.supports(crypto_code):
            raise ListenerError(f"{crypto_code} is not configured")
        return await listener.reconciler.update_any_pending_payment(crypto_code)
    finally:
        await listener.close()


@dramatiq.actor(broker=broker, max_retries=0, time_limit=300_000)  # 5 min timeout
@async_actor
async def rescan_pending_payments(crypto_code: str = "XMR") -> None:
    """Force a rescan of pending payments."""
    logger.info(f"[{crypto_code}] Starting pending payment rescan...")
    try:
        result = await rescan_pending_async(crypto_code)
        logger.info(
            f"[{crypto_code}] Pending payment rescan complete: "
            f"{len(result.created)} new, {len(result.updated)} updated, "
            f"{len(result.failed_accounts)} failed accounts"
        )
    except Exception as e:
        logger.exception(f"[{crypto_code}] Pending payment rescan failed: {e}")
