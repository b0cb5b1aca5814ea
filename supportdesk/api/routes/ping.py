from fastapi import APIRouter

from supportdesk.dependencies.auth import CurrentCaller

router = APIRouter(prefix="/ping", tags=["health"])


@router.get("", summary="Public health check")
async def ping() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/whoami", summary="Echo the caller resolved from the bearer token")
async def whoami(caller: CurrentCaller) -> dict[str, str | None]:
    return {"status": "ok", "user": caller.user_id}
