from fastapi import APIRouter, Request

router = APIRouter(tags=["health"])


@router.get("/")
def index(request: Request):
    s = request.app.state.settings
    return {"service": s.SERVICE_NAME, "env": s.ENV, "note": "non-official Riot auth relay"}


@router.get("/healthz")
def healthz():
    return {"ok": True}


@router.get("/readyz")
def readyz(request: Request):
    store = request.app.state.exchange_store
    return {
        "ready": True,
        "sweeping": store.sweeping,
        "pending_codes": len(store),
        "pending_attempts": len(request.app.state.coordinator),
    }
