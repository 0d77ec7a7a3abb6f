from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from playlist_sync.db.session import get_db

router = APIRouter(tags=["health"])

@router.get("/healthz", summary="Liveness probe")
def healthz():
    return {"ok": True}

@router.get("/readyz", summary="Readiness probe (database reachable)")
def readyz(db: Session = Depends(get_db)):
    db.execute(text("SELECT 1"))
    return {"ok": True}
