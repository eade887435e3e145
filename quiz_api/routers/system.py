from fastapi import APIRouter, Depends

from quiz_api.core.config import get_settings
from quiz_api.core.deps import get_session_store
from quiz_api.services.session_store import SessionStore

router = APIRouter(tags=["system"])


@router.get("/health")
def health(store: SessionStore = Depends(get_session_store)):
    s = get_settings()
    store_ok = store.ping()
    return {"status": "ok" if store_ok else "degraded", "store": store_ok, "version": s.APP_VERSION}


@router.get("/version")
def version():
    s = get_settings()
    return {"name": s.APP_NAME, "version": s.APP_VERSION, "env": s.APP_ENV}
