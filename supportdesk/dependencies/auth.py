from typing import Annotated

from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from supportdesk.core.config import Settings, get_settings
from supportdesk.identity import CallerContext

bearer_scheme = HTTPBearer(auto_error=False)


def resolve_caller_from_token(token: str | None, settings: Settings) -> CallerContext:
    """Map a bearer token onto the caller it was issued to.

    A missing token yields an anonymous caller; the identity gate decides
    whether the operation accepts it. Unknown tokens are rejected here.
    """

    if token is None:
        return CallerContext.anonymous()

    user_id = settings.auth_tokens.get(token)
    if user_id is None:
        raise HTTPException(status_code=401, detail="Invalid authentication credentials")
    return CallerContext(user_id=user_id)


async def get_current_caller(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(bearer_scheme)],
    request: Request,
) -> CallerContext:
    """Very small authentication stub backed by ``Settings.auth_tokens``."""

    cached = getattr(request.state, "caller", None)
    if isinstance(cached, CallerContext):
        return cached

    token = credentials.credentials if credentials is not None else None
    caller = resolve_caller_from_token(token, get_settings())
    request.state.caller = caller
    return caller


CurrentCaller = Annotated[CallerContext, Depends(get_current_caller)]
