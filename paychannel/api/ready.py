from fastapi import APIRouter, Request, Response, status
from sqlalchemy import select, text

from paychannel.db.models import PricingSnapshot
from paychannel.utils.timeutils import as_utc, utcnow

router = APIRouter()


async def check_db(session_factory):
    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
        return True, None
    except Exception as e:
        return False, str(e)


async def check_pricing(session_factory, stale_after):
    """Age of the newest pricing snapshot; informational, never fails readiness."""
    try:
        async with session_factory() as session:
            updated_at = (await session.execute(
                select(PricingSnapshot.updated_at).order_by(PricingSnapshot.updated_at.desc()).limit(1)
            )).scalar_one_or_none()
    except Exception as e:
        return {"ok": False, "error": str(e)}
    if updated_at is None:
        return {"ok": False, "error": "no pricing snapshot yet"}
    age = utcnow() - as_utc(updated_at)
    return {"ok": age <= stale_after, "age_seconds": int(age.total_seconds()), "stale": age > stale_after}


@router.get("/ready")
async def ready(request: Request, response: Response):
    """
    Readiness verifies DB connectivity; returns 503 if the core is not up or the DB is unreachable.
    """
    core = getattr(request.app.state, "core", None)
    if core is None:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "starting", "dependencies": {}}

    db_ok, db_err = await check_db(core.session_factory)
    pricing = await check_pricing(core.session_factory, core.pricing.stale_after) if db_ok else {"ok": False, "error": "database unavailable"}
    response.status_code = status.HTTP_200_OK if db_ok else status.HTTP_503_SERVICE_UNAVAILABLE
    return {
        "status": "ok" if db_ok else "degraded",
        "dependencies": {
            "database": {"ok": db_ok, "error": db_err},
            "pricing": pricing,
        },
    }
