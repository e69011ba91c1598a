from fastapi import APIRouter

from paychannel.utils.timeutils import utcnow

router = APIRouter()

SERVICE_NAME = "paychannel"
SERVICE_VERSION = "1.0.0"


@router.get("/health")
async def health():
    """
    Liveness: always 200, no DB dependency.
    """
    return {
        "status": "ok",
        "service": SERVICE_NAME,
        "timestamp": utcnow().isoformat(),
        "version": SERVICE_VERSION,
    }
