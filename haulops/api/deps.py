from typing import Callable, Optional, get_args

from fastapi import Depends, Header, HTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from haulops import idempotency
from haulops.schemas import Actor, Role

ROLES = set(get_args(Role))


def get_actor(actor_id: Optional[str] = Header(default=None, alias="X-Actor-Id"),
              actor_role: Optional[str] = Header(default=None, alias="X-Actor-Role")) -> Actor:
    if not actor_id or not actor_role:
        raise HTTPException(401, detail="X-Actor-Id and X-Actor-Role headers are required")
    role = actor_role.strip().lower()
    if role not in ROLES:
        raise HTTPException(401, detail=f"Unknown actor role {actor_role!r}")
    return Actor(id=actor_id.strip(), role=role)


def require_roles(*roles: str):
    def dependency(actor: Actor = Depends(get_actor)) -> Actor:
        if actor.role not in roles:
            raise HTTPException(403, detail=f"Role {actor.role} may not perform this action")
        return actor
    return dependency


def run_idempotent(db: Session, actor: Actor, key: Optional[str], method: str, path: str,
                   fn: Callable[[], object], status_code: int = 200) -> JSONResponse:
    # Keys are per caller: another actor reusing the same key gets its own request.
    path = f"{actor.role}:{actor.id} {path}"
    cached = idempotency.replay_or_claim(db, key, method, path)
    if cached is not None:
        return cached
    try:
        payload = jsonable_encoder(fn())
    except Exception:
        if key:
            idempotency.release(db, key, method, path)
        raise
    if key:
        idempotency.complete(db, key, method, path, status_code, payload)
    return JSONResponse(content=payload, status_code=status_code)
