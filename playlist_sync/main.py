import logging
import time
import uuid
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from playlist_sync.core.config import settings
from playlist_sync.core.logging import setup_logging, set_request_id
from playlist_sync.db.session import engine
from playlist_sync.db.models import Base
from playlist_sync.routers import health
from playlist_sync.routers import auth as auth_router
from playlist_sync.routers import sync as sync_router
from playlist_sync.services.crypto import get_fernet

setup_logging(settings.LOG_DIR)

app = FastAPI(title="YouTube Playlist Sync", version="1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        rid = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
        set_request_id(rid)
        start = time.perf_counter()
        response = await call_next(request)
        dur_ms = int((time.perf_counter() - start) * 1000)
        host = request.client.host if request.client else "-"
        logging.getLogger("playlist_sync.request").info(
            f"{host} {request.method} {request.url.path} {response.status_code} {dur_ms}ms",
            extra={"method": request.method, "path": str(request.url.path), "status": response.status_code, "dur_ms": dur_ms},
        )
        response.headers["X-Request-ID"] = rid
        return response

app.add_middleware(RequestIdMiddleware)

app.include_router(health.router)
app.include_router(auth_router.router)
app.include_router(sync_router.router)

@app.on_event("startup")
def on_startup():
    get_fernet()  # refuse to start without a usable ENCRYPTION_KEY
    Base.metadata.create_all(bind=engine)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("playlist_sync.main:app", host="0.0.0.0", port=8000, reload=True)
