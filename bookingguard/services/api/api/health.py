# bookingguard/services/api/api/health.py
from fastapi import APIRouter, Request, status

router = APIRouter()


@router.get("", status_code=status.HTTP_200_OK)
async def health_check(request: Request):
    """
    Liveness plus readiness: `evaluator_ready` is false until the lifespan has
    connected the velocity counter and built the risk evaluator.
    """
    ready = getattr(request.app.state, "evaluator", None) is not None
    return {
        "status": "ok" if ready else "degraded",
        "evaluator_ready": ready,
        "message": "BookingGuard risk API is running!" if ready else "Risk evaluator is not initialised",
    }
