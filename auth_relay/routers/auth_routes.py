from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request, Response
from fastapi.responses import HTMLResponse, JSONResponse

from ..coordinator import HandoffCoordinator
from ..errors import CodeNotFound, IncompleteCredential, LoginFailed, OriginNotAllowed
from ..pages import complete_page, failure_page, login_page

router = APIRouter(tags=["auth"])
log = logging.getLogger("auth_relay.auth")

NO_STORE = {"Cache-Control": "no-store", "Pragma": "no-cache"}


def _coordinator(request: Request) -> HandoffCoordinator:
    return request.app.state.coordinator


def _form_str(form, key: str) -> str:
    value = form.get(key)
    return value if isinstance(value, str) else ""


# ---------------------------------------------------------------------
# Login entry point
# ---------------------------------------------------------------------

@router.get("/auth/login")
async def login(request: Request, redirect: str = "", origin: str = "") -> Response:
    try:
        handle = _coordinator(request).begin_login(redirect or None, origin=origin or None)
    except OriginNotAllowed as e:
        log.warning("[login] rejected origin=%s", e.origin)
        raise HTTPException(status_code=400, detail="Invalid origin for /auth/login")

    html = login_page(
        attempt_id=handle.attempt_id,
        redirect=handle.redirect,
        origin=handle.target_origin,
    )
    return HTMLResponse(content=html, headers=NO_STORE)


@router.post("/auth/submit")
async def submit(request: Request) -> Response:
    form = await request.form()
    attempt_id = _form_str(form, "attempt_id")
    username = _form_str(form, "username").strip()
    password = _form_str(form, "password")
    redirect = _form_str(form, "redirect") or None
    origin = _form_str(form, "origin") or None

    if not username or not password:
        return HTMLResponse(
            failure_page(message="Missing credentials", redirect=redirect, origin=origin),
            status_code=400,
        )

    coordinator = _coordinator(request)
    target_origin = coordinator.target_origin(attempt_id)

    try:
        code = await coordinator.complete_login(attempt_id, username, password)
    except IncompleteCredential:
        log.warning("[submit] attempt=%s login returned no access token", attempt_id)
        return HTMLResponse(
            failure_page(message="Authentication failed. The login did not return a usable token.", redirect=redirect, origin=origin),
            status_code=401,
            headers=NO_STORE,
        )
    except LoginFailed as e:
        log.info("[submit] attempt=%s login failed reason=%s", attempt_id, e.reason)
        return HTMLResponse(
            failure_page(message="Authentication failed. Check your credentials and try again.", redirect=redirect, origin=origin),
            status_code=401,
            headers=NO_STORE,
        )

    return HTMLResponse(complete_page(code=code, target_origin=target_origin or ""), headers=NO_STORE)


# ---------------------------------------------------------------------
# Redemption: GET /token?code=ONE_TIME_CODE
# ---------------------------------------------------------------------

@router.get("/token")
async def token(request: Request, code: str = "") -> Response:
    if not code:
        return JSONResponse({"error": "missing_code"}, status_code=400, headers=NO_STORE)

    try:
        payload = _coordinator(request).redeem(code, origin=request.headers.get("origin"))
    except CodeNotFound:
        return JSONResponse({"error": "code_not_found_or_expired"}, status_code=404, headers=NO_STORE)

    return JSONResponse(payload, headers=NO_STORE)
