"""Rate-limit probe endpoint.

``GET|POST /rate-limiter/{endpoint}`` consumes one request from the
caller's window for ``endpoint`` and reports whether it was allowed.
Clients call it before an expensive action; the server also applies the
same limiter to its own auth and analysis routes.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from expense_desk.services.rate_limiter import RateLimitExceeded, RateLimiter, client_ip, get_rate_limiter

router = APIRouter(prefix="/rate-limiter", tags=["rate-limiter"])


@router.api_route("/{endpoint:path}", methods=["GET", "POST"])
async def check_rate_limit(
    endpoint: str,
    request: Request,
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> JSONResponse:
    result = await limiter.check(client_ip(request), endpoint)
    if not result.allowed:
        raise RateLimitExceeded(result)
    return JSONResponse({"allowed": True}, headers=result.headers())
