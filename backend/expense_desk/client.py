"""Async HTTP client for the Expense Desk API.

``ExpenseDeskClient`` wraps ``httpx.AsyncClient`` with the checks the web
front end performs before talking to the server:

- sign-up rejects short passwords and mismatching confirmations locally;
- sign-in, sign-up and receipt uploads go through a client-side
  fixed-window limiter (``auth`` 3 per 5 minutes, ``upload`` 5 per minute)
  that complements the server's own limiter.

Failures raise :class:`ExpenseDeskError` carrying a user-facing Spanish
message; the raw server message stays available on ``detail``.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import httpx

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6
GENERIC_ERROR = "Ha ocurrido un error inesperado"

ERROR_TRANSLATIONS: Dict[str, str] = {
    "Invalid login credentials": "Email o contraseña incorrectos",
    "User already registered": "Ya existe una cuenta con este email",
    "Email not confirmed": "Debes verificar tu email antes de iniciar sesión",
    "Password should be at least 6 characters": "La contraseña debe tener al menos 6 caracteres",
}


def translate_error(message: Optional[str]) -> str:
    """Map a server error message to the message shown to users."""
    if not message:
        return GENERIC_ERROR
    return ERROR_TRANSLATIONS.get(message, GENERIC_ERROR)


class ExpenseDeskError(Exception):
    """Error raised by :class:`ExpenseDeskClient`.

    ``message`` is user-facing; ``detail`` is what the server (or the local
    check) actually said; ``status_code`` is ``None`` for local failures.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        detail: Any = None,
        retry_after: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.detail = detail
        self.retry_after = retry_after


@dataclass(frozen=True)
class ClientLimit:
    max_requests: int
    window_seconds: float


class ClientRateLimiter:
    """Fixed-window limiter kept in the client process."""

    CONFIGS: Dict[str, ClientLimit] = {
        "upload": ClientLimit(5, 60),
        "auth": ClientLimit(3, 300),
        "api": ClientLimit(30, 60),
    }

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: Dict[str, list] = {}

    def is_allowed(self, key: str, limit: ClientLimit) -> bool:
        now = self._clock()
        entry = self._entries.get(key)
        if entry is None or now > entry[1]:
            self._entries[key] = [1, now + limit.window_seconds]
            return True
        if entry[0] < limit.max_requests:
            entry[0] += 1
            return True
        return False

    def remaining_seconds(self, key: str) -> float:
        entry = self._entries.get(key)
        if entry is None:
            return 0.0
        return max(0.0, entry[1] - self._clock())

    def reset(self, key: Optional[str] = None) -> None:
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)


class ExpenseDeskClient:
    """Thin async client; use as ``async with ExpenseDeskClient(url) as c: ...``."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        limiter: Optional[ClientRateLimiter] = None,
    ) -> None:
        self.token = token
        self.limiter = limiter or ClientRateLimiter()
        self._http = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    async def __aenter__(self) -> "ExpenseDeskClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    # ------------------------------------------------------------------
    # plumbing

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"} if self.token else {}

    def _throttle(self, key: str, config: str, message: str) -> None:
        if not self.limiter.is_allowed(key, ClientRateLimiter.CONFIGS[config]):
            minutes = math.ceil(self.limiter.remaining_seconds(key) / 60)
            raise ExpenseDeskError(message.format(minutes=minutes), detail="client rate limit")

    @staticmethod
    def _server_message(response: httpx.Response) -> Any:
        try:
            body = response.json()
        except ValueError:
            return response.text or None
        if isinstance(body, dict):
            for key in ("detail", "error", "message"):
                if body.get(key):
                    return body[key]
        return body

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = await self._http.request(method, url, headers=self._headers(), **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("request failed %s %s: %s", method, url, exc)
            raise ExpenseDeskError(GENERIC_ERROR, detail=str(exc)) from exc
        if response.status_code == 429:
            try:
                body = response.json()
            except ValueError:
                body = {}
            if not isinstance(body, dict):
                body = {}
            raise ExpenseDeskError(
                body.get("message") or GENERIC_ERROR,
                status_code=429,
                detail=body.get("error"),
                retry_after=body.get("retryAfter"),
            )
        if response.is_error:
            detail = self._server_message(response)
            raise ExpenseDeskError(
                translate_error(detail if isinstance(detail, str) else None),
                status_code=response.status_code,
                detail=detail,
            )
        return response

    # ------------------------------------------------------------------
    # auth

    async def sign_up(self, email: str, password: str, name: str, confirm_password: Optional[str] = None) -> Dict[str, Any]:
        if confirm_password is not None and password != confirm_password:
            raise ExpenseDeskError("Las contraseñas no coinciden")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ExpenseDeskError(ERROR_TRANSLATIONS["Password should be at least 6 characters"])
        self._throttle("/auth/signup", "auth", "Demasiados intentos de registro. Intenta en {minutes} minutos.")
        response = await self._request("POST", "/auth/signup", json={"email": email, "password": password, "name": name})
        data = response.json()
        self.token = data["access_token"]
        return data

    async def sign_in(self, email: str, password: str) -> Dict[str, Any]:
        self._throttle("/auth/signin", "auth", "Demasiados intentos de login. Intenta en {minutes} minutos.")
        response = await self._request("POST", "/auth/signin", json={"email": email, "password": password})
        data = response.json()
        self.token = data["access_token"]
        return data

    async def session(self) -> Dict[str, Any]:
        return (await self._request("GET", "/auth/session")).json()

    async def sign_out(self) -> None:
        if self.token:
            await self._request("POST", "/auth/signout")
        self.token = None

    # ------------------------------------------------------------------
    # receipts & expenses

    async def analyze_receipt(self, content: bytes, filename: str, content_type: str) -> Dict[str, Any]:
        """Return the reconciled analysis fields for one receipt."""
        self._throttle("upload", "upload", "Demasiadas subidas. Intenta en {minutes} minutos.")
        response = await self._request(
            "POST",
            "/analyze-receipt",
            files={"file": (filename, content, content_type)},
        )
        return response.json()["data"]

    async def create_expense_from_receipt(self, content: bytes, filename: str, content_type: str) -> Dict[str, Any]:
        self._throttle("upload", "upload", "Demasiadas subidas. Intenta en {minutes} minutos.")
        response = await self._request(
            "POST",
            "/expenses/from-receipt",
            files={"file": (filename, content, content_type)},
        )
        return response.json()

    async def create_expense(self, expense: Dict[str, Any]) -> Dict[str, Any]:
        return (await self._request("POST", "/expenses", json=expense)).json()

    async def list_expenses(self, **filters: Any) -> Dict[str, Any]:
        params = {k: v for k, v in filters.items() if v is not None}
        return (await self._request("GET", "/expenses", params=params)).json()

    async def approve_expense(self, expense_id: int) -> Dict[str, Any]:
        return (await self._request("POST", f"/expenses/{expense_id}/approve")).json()

    async def reject_expense(self, expense_id: int, reason: str) -> Dict[str, Any]:
        return (await self._request("POST", f"/expenses/{expense_id}/reject", json={"reason": reason})).json()

    async def check_rate_limit(self, endpoint: str) -> bool:
        """Ask the server whether ``endpoint`` may be called; False when throttled."""
        try:
            await self._request("GET", f"/rate-limiter/{endpoint.lstrip('/')}")
        except ExpenseDeskError as exc:
            if exc.status_code == 429:
                return False
            raise
        return True
