from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.orm import Session

from .models import IdempotencyKey

IN_FLIGHT = 102


def claim(s: Session, key: str, method: str, path: str) -> Dict[str, Any]:
    """Claim an Idempotency-Key for (method, path).

    Returns {"claimed": True} for the first caller, {"cached": (status, body)}
    once the first caller has completed, {"inflight": True} otherwise.
    """
    now = datetime.utcnow()
    if s.get_bind().dialect.name == "postgresql":
        stmt = pg_insert(IdempotencyKey).values(
            key=key, method=method, path=path, status_code=IN_FLIGHT, created_at=now
        ).on_conflict_do_nothing().returning(IdempotencyKey.id)
        row = s.execute(stmt).first()
        s.commit()
        if row:
            return {"claimed": True}
    existing = s.query(IdempotencyKey).filter_by(key=key, method=method, path=path).first()
    if existing is None:
        s.add(IdempotencyKey(key=key, method=method, path=path, status_code=IN_FLIGHT, created_at=now))
        s.commit()
        return {"claimed": True}
    if existing.response_json is not None and (existing.status_code or 0) >= 200:
        return {"claimed": False, "cached": (existing.status_code, existing.response_json)}
    return {"claimed": False, "inflight": True}


def complete(s: Session, key: str, method: str, path: str, status_code: int, payload: Dict[str, Any]) -> None:
    s.query(IdempotencyKey).filter_by(key=key, method=method, path=path).update(
        {"status_code": status_code, "response_json": payload})
    s.commit()


def release(s: Session, key: str, method: str, path: str) -> None:
    """Drop an in-flight claim whose request failed so the client can retry."""
    s.rollback()
    s.query(IdempotencyKey).filter_by(key=key, method=method, path=path, status_code=IN_FLIGHT).delete()
    s.commit()


def replay_or_claim(s: Session, key: Optional[str], method: str, path: str) -> Optional[JSONResponse]:
    """Route helper: a cached response to return as-is, or None to proceed."""
    if not key:
        return None
    r = claim(s, key, method, path)
    if r.get("claimed"):
        return None
    if r.get("cached"):
        sc, payload = r["cached"]
        return JSONResponse(content=payload, status_code=sc)
    raise HTTPException(409, "Duplicate request is in progress")
