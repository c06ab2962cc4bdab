"""
Daemon callback and health HTTP server.

monerod (--block-notify) and monero-wallet-rpc (--tx-notify) call these
endpoints; each call becomes a signal for the scanner:
- GET {prefix}/block?hash=&cryptoCode=  -> NewBlock
- GET {prefix}/tx?hash=&cryptoCode=     -> TransactionUpdated
"""

import asyncio

from aiohttp import web
from loguru import logger

from xmrpay.services.event_scanner import EventDrivenScanner
from xmrpay.services.events import NewBlock, TransactionUpdated

scanner_key = web.AppKey("scanner", EventDrivenScanner)


def _read_params(request: web.Request) -> tuple[str, str]:
    """
    Read hash and crypto code from the query string.

    Raises:
        web.HTTPBadRequest: If a parameter is missing
        web.HTTPNotFound: If the crypto code is not served here
    """
    tx_or_block_hash = request.query.get("hash", "").strip()
    crypto_code = request.query.get("cryptoCode", "").strip().upper()
    if not tx_or_block_hash or not crypto_code:
        raise web.HTTPBadRequest(text="hash and cryptoCode are required")
    if not request.app[scanner_key].supports(crypto_code):
        raise web.HTTPNotFound(text=f"{crypto_code} is not configured")
    return tx_or_block_hash, crypto_code


async def block_notify_handler(request: web.Request) -> web.Response:
    """Daemon found a new block."""
    block_hash, crypto_code = _read_params(request)
    request.app[scanner_key].submit(NewBlock(crypto_code=crypto_code, block_hash=block_hash))
    logger.debug(f"[{crypto_code}] Block notification {block_hash}")
    return web.Response(status=200)


async def tx_notify_handler(request: web.Request) -> web.Response:
    """Wallet saw a new or changed transaction."""
    tx_hash, crypto_code = _read_params(request)
    request.app[scanner_key].submit(TransactionUpdated(crypto_code=crypto_code, tx_hash=tx_hash))
    logger.debug(f"[{crypto_code}] Transaction notification {tx_hash}")
    return web.Response(status=200)


async def health_handler(request: web.Request) -> web.Response:
    """
    Health check endpoint.

    Returns:
        JSON response with scanner status
    """
    scanner = request.app[scanner_key]
    return web.json_response(
        {
            "status": "healthy" if scanner.running else "stopped",
            "scanner_state": str(scanner.state),
            "queued_signals": scanner.queue.qsize(),
            "processed_signals": scanner.processed,
            "failed_signals": scanner.failed,
            "availability": scanner.availability,
        },
        status=200 if scanner.running else 503,
    )


async def liveness_handler(request: web.Request) -> web.Response:
    """Liveness check endpoint."""
    return web.json_response({"status": "alive", "alive": True})


def create_app(scanner: EventDrivenScanner, prefix: str = "/monerolikedaemoncallback") -> web.Application:
    """
    Build the aiohttp application.

    Args:
        scanner: Scanner receiving the signals
        prefix: Path prefix of the callback routes

    Returns:
        Configured application
    """
    app = web.Application()
    app[scanner_key] = scanner
    app.router.add_get(f"{prefix}/block", block_notify_handler)
    app.router.add_get(f"{prefix}/tx", tx_notify_handler)
    app.router.add_get("/health", health_handler)
    app.router.add_get("/liveness", liveness_handler)
    return app


async def start_callback_server(
    app: web.Application,
    host: str = "0.0.0.0",
    port: int = 8080,
) -> web.AppRunner:
    """
    Start the HTTP server.

    Returns:
        AppRunner for cleanup
    """
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()

    logger.info(f"Callback server started on {host}:{port}")
    return runner


async def stop_callback_server(runner: web.AppRunner, timeout: int = 5) -> None:
    """Stop the HTTP server gracefully."""
    logger.info("Stopping callback server...")
    try:
        await asyncio.wait_for(runner.cleanup(), timeout=timeout)
        logger.info("Callback server stopped")
    except TimeoutError:
        logger.warning(f"Callback server cleanup timed out after {timeout}s")
