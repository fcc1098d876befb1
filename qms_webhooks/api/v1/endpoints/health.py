from fastapi import APIRouter, Request

router = APIRouter()

@router.get("/health")
async def health(request: Request) -> dict:
    retries = getattr(request.app.state, "retry_scheduler", None)
    return {
        "status": "ok",
        "scheduler": retries.status() if retries is not None else {},
    }
