import logging
import os
from datetime import datetime

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

load_dotenv()

from db.deps import get_armory_db  # noqa: E402
from schemas.allocations import AllocationRequest, OverdueQuery, ReturnRequest  # noqa: E402
from schemas.users import UserCreate  # noqa: E402
from schemas.weapons import WeaponCreate, WeaponUpdate  # noqa: E402
from services.allocation_errors import ArmoryError, ErrorKind, Rejection  # noqa: E402
from services.allocation_service import (  # noqa: E402
    allocate,
    evaluate_request,
    get_allocation,
    list_allocations,
    return_allocation,
    serialize_allocation,
)
from services.event_service import acknowledge_event, list_pending_events, serialize_event  # noqa: E402
from services.overdue_service import scan_active_allocations  # noqa: E402
from services.stats_service import fleet_stats, user_stats  # noqa: E402
from services.user_service import create_user, get_user, list_users, serialize_user  # noqa: E402
from services.weapon_service import (  # noqa: E402
    create_weapon,
    delete_weapon,
    get_weapon,
    list_weapons,
    serialize_weapon,
    update_weapon,
)

app = FastAPI(title="Armory Management")


def _parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [item.strip() for item in str(raw).split(",") if item.strip()]


_CORS_ALLOW_ORIGINS = _parse_csv_env(
    "CORS_ALLOW_ORIGINS",
    "http://127.0.0.1,http://localhost,http://127.0.0.1:5173,http://localhost:5173",
)
_CORS_ALLOW_CREDENTIALS = str(os.environ.get("CORS_ALLOW_CREDENTIALS", "true")).strip().lower() in {"1", "true", "yes", "on"}
if "*" in _CORS_ALLOW_ORIGINS:
    # Browsers reject wildcard origins with credentials; force safe behavior.
    _CORS_ALLOW_CREDENTIALS = False

app.add_middleware(
    CORSMiddleware,
    allow_origins=_CORS_ALLOW_ORIGINS,
    allow_credentials=_CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
)

API_LOGGER = logging.getLogger("armory.api")

STATUS_BY_KIND = {
    ErrorKind.VALIDATION_FAILED: 409,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.NOT_OWNER: 403,
    ErrorKind.REASON_REQUIRED: 400,
    ErrorKind.WEAPON_IN_USE: 409,
    ErrorKind.CONCURRENT_MODIFICATION: 409,
    ErrorKind.STORAGE_UNAVAILABLE: 503,
    ErrorKind.DUPLICATE_SERIAL: 409,
    ErrorKind.INVALID_INPUT: 400,
}


@app.exception_handler(ArmoryError)
def handle_armory_error(request: Request, exc: ArmoryError):
    status_code = STATUS_BY_KIND.get(exc.kind, 400)
    if exc.reason == Rejection.ADMIN_NOT_ALLOWED:
        status_code = 403
    if status_code >= 500:
        API_LOGGER.error("Request failed path=%s kind=%s", request.url.path, exc.kind.value)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@app.get("/healthz")
def healthcheck():
    return {"status": "ok"}


@app.get("/api/healthz")
def healthcheck_api(db: Session = Depends(get_armory_db)):
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:
        raise HTTPException(status_code=503, detail=f"db_unavailable: {exc}") from exc


@app.get("/api/users")
def get_users(
    include_admins: bool = Query(True, alias="includeAdmins"),
    db: Session = Depends(get_armory_db),
):
    return [serialize_user(user) for user in list_users(db, include_admins=include_admins)]


@app.post("/api/users")
def post_user(payload: UserCreate, db: Session = Depends(get_armory_db)):
    user = create_user(db, payload.fullName, payload.email, is_admin=payload.isAdmin)
    return serialize_user(user)


@app.get("/api/users/{user_id}")
def get_user_item(user_id: int, db: Session = Depends(get_armory_db)):
    return serialize_user(get_user(db, user_id))


@app.get("/api/weapons")
def get_weapons(
    status: str | None = Query(None),
    weapon_type: str | None = Query(None, alias="type"),
    db: Session = Depends(get_armory_db),
):
    return [serialize_weapon(weapon) for weapon in list_weapons(db, status=status, weapon_type=weapon_type)]


@app.get("/api/weapons/{weapon_id}")
def get_weapon_item(weapon_id: int, db: Session = Depends(get_armory_db)):
    return serialize_weapon(get_weapon(db, weapon_id))


@app.post("/api/weapons")
def post_weapon(
    payload: WeaponCreate,
    db: Session = Depends(get_armory_db),
    x_actor_user_id: int | None = Header(None, alias="X-Actor-User-ID"),
):
    weapon = create_weapon(db, payload.model_dump(), actor_user_id=x_actor_user_id)
    return serialize_weapon(weapon)


@app.put("/api/weapons/{weapon_id}")
def put_weapon(
    weapon_id: int,
    payload: WeaponUpdate,
    db: Session = Depends(get_armory_db),
    x_actor_user_id: int | None = Header(None, alias="X-Actor-User-ID"),
):
    weapon = update_weapon(db, weapon_id, payload.model_dump(exclude_unset=True), actor_user_id=x_actor_user_id)
    return serialize_weapon(weapon)


@app.delete("/api/weapons/{weapon_id}")
def remove_weapon(
    weapon_id: int,
    db: Session = Depends(get_armory_db),
    x_actor_user_id: int | None = Header(None, alias="X-Actor-User-ID"),
):
    delete_weapon(db, weapon_id, actor_user_id=x_actor_user_id)
    return {"message": "Deleted"}


@app.get("/api/allocations")
def get_allocations(
    user_id: int | None = Query(None, alias="userID"),
    status: str | None = Query(None),
    db: Session = Depends(get_armory_db),
):
    now = datetime.now()
    return [serialize_allocation(allocation, now) for allocation in list_allocations(db, user_id=user_id, status=status)]


@app.get("/api/allocations/{allocation_id}")
def get_allocation_item(allocation_id: int, db: Session = Depends(get_armory_db)):
    return serialize_allocation(get_allocation(db, allocation_id))


@app.post("/api/allocations/check")
def check_allocation(payload: AllocationRequest, db: Session = Depends(get_armory_db)):
    try:
        _, rejection = evaluate_request(db, payload.weaponID, payload.userID, payload.requestingUserID)
    finally:
        db.rollback()
    return {"allowed": rejection is None, "reason": rejection.value if rejection else None}


@app.post("/api/allocations")
def post_allocation(payload: AllocationRequest, db: Session = Depends(get_armory_db)):
    allocation = allocate(
        db,
        payload.weaponID,
        payload.userID,
        payload.notes,
        requesting_user_id=payload.requestingUserID,
    )
    return serialize_allocation(get_allocation(db, allocation.AllocationID))


@app.post("/api/allocations/{allocation_id}/return")
def post_return(allocation_id: int, payload: ReturnRequest, db: Session = Depends(get_armory_db)):
    return_allocation(
        db,
        allocation_id,
        payload.requestingUserID,
        payload.destination,
        payload.maintenanceReason,
    )
    return serialize_allocation(get_allocation(db, allocation_id))


@app.get("/api/notifications")
def get_notifications(query: OverdueQuery = Depends(), db: Session = Depends(get_armory_db)):
    return scan_active_allocations(db, query.now, user_id=query.userID)


@app.get("/api/events/pending")
def get_pending_events(limit: int = Query(100, ge=1, le=1000), db: Session = Depends(get_armory_db)):
    return [serialize_event(event) for event in list_pending_events(db, limit=limit)]


@app.post("/api/events/{event_id}/ack")
def ack_event(event_id: int, db: Session = Depends(get_armory_db)):
    event = acknowledge_event(db, event_id)
    return serialize_event(event)


@app.get("/api/stats")
def get_stats(db: Session = Depends(get_armory_db)):
    return fleet_stats(db)


@app.get("/api/stats/users/{user_id}")
def get_user_stats(user_id: int, db: Session = Depends(get_armory_db)):
    return user_stats(db, user_id)
