import logging

from fastapi import FastAPI

from paychannel.api import health, ready
from paychannel.bootstrap import build_core
from paychannel.core.config import settings
from paychannel.core.sentry import init_sentry

logger = logging.getLogger("paychannel")
app = FastAPI(title="Paychannel Core", version=health.SERVICE_VERSION)

app.include_router(health.router, prefix="/api")
app.include_router(ready.router, prefix="/api")


@app.on_event("startup")
async def startup_event():
    logging.basicConfig(level=getattr(settings, "LOG_LEVEL", "INFO"), format="%(asctime)s %(levelname)s %(name)s %(message)s")
    init_sentry()
    logger.info("Starting paychannel core")
    # a missing seed or encryption key aborts startup here
    app.state.core = build_core(settings)


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Shutting down paychannel core")
    core = getattr(app.state, "core", None)
    if core is not None:
        await core.aclose()
