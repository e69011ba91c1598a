"""
Channel worker: expires stale channels and keeps pricing fresh.

- Runs as a separate process next to the API.
- Every CLEANUP_INTERVAL_SECONDS: pending channels past expires_at -> expired
  (their addresses re-enter the reuse pool after the cool-down)
- Every PRICING_REFRESH_INTERVAL_SECONDS: pricing refresh
- Serves Prometheus metrics on WORKER_METRICS_PORT
"""
import asyncio
import logging
from typing import Optional

from prometheus_client import start_http_server

from paychannel.bootstrap import PaymentCore, build_core
from paychannel.channels.service import ChannelService
from paychannel.core.config import settings
from paychannel.core.sentry import init_sentry

logger = logging.getLogger("paychannel.channels.worker")

CLEANUP_INTERVAL = int(getattr(settings, "CLEANUP_INTERVAL_SECONDS", 60))
METRICS_PORT = int(getattr(settings, "WORKER_METRICS_PORT", 8003))


async def sweep_loop(channels: ChannelService, stop: asyncio.Event, interval: float = CLEANUP_INTERVAL):
    consecutive_errors = 0
    while not stop.is_set():
        delay = interval
        try:
            await channels.sweep_expired()
            consecutive_errors = 0
        except Exception:
            logger.exception("Expiry sweep failed")
            consecutive_errors += 1
            delay = min(300, max(interval, 2 ** min(consecutive_errors, 8)))
        try:
            await asyncio.wait_for(stop.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass


async def worker_loop(core: Optional[PaymentCore] = None, stop: Optional[asyncio.Event] = None):
    core = core or build_core()
    stop = stop or asyncio.Event()
    try:
        await asyncio.gather(
            sweep_loop(core.channels, stop),
            core.pricing.run_scheduled(stop),
        )
    finally:
        await core.aclose()


def run_worker():
    logging.basicConfig(level=getattr(settings, "LOG_LEVEL", "INFO"), format="%(asctime)s %(levelname)s %(name)s %(message)s")
    init_sentry()
    try:
        start_http_server(METRICS_PORT)
        logger.info("Prometheus metrics server started on port %s", METRICS_PORT)
    except Exception as exc:
        logger.warning("Failed to start metrics server: %s", exc)
    logger.info("Starting channel worker")
    asyncio.run(worker_loop())


if __name__ == "__main__":
    run_worker()
