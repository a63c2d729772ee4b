"""FastAPI server exposing the HostelEngine API.

Run locally:
  uvicorn server:app --reload

Environment:
  DB_BACKEND=memory|mongodb
  MONGODB_URI=... (when DB_BACKEND=mongodb)
  DB_NAME=hostel_hub
  COLLECTION_PREFIX=dev_
  SNAPSHOT_PATH=hostel.json (memory backend: loaded at startup, saved at shutdown)
  SEED_DEFAULTS=1
  LOG_LEVEL=INFO

Callers identify themselves with the X-Role (admin|resident) and
X-Resident-Id headers; requests without them act as the administrator.
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional, Union

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, field_validator

from hostel_hub import (
    ActorContext,
    CAPACITY_EXCEEDED,
    DuplicateKey,
    HostelAnalytics,
    HostelEngine,
    InvalidArgument,
    MongoBackend,
    NOT_FOUND,
    NotFound,
    ROLE_ADMIN,
    load_snapshot,
    parse_date,
    save_snapshot,
    seed_defaults,
    today,
)

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def get_engine() -> HostelEngine:
    backend = os.getenv("DB_BACKEND", "memory").lower()
    if backend == "mongodb":
        uri = os.getenv("MONGODB_URI")
        db_name = os.getenv("DB_NAME", "hostel_hub")
        prefix = os.getenv("COLLECTION_PREFIX", "")
        if not uri:
            raise RuntimeError("DB_BACKEND=mongodb requires MONGODB_URI")
        return HostelEngine(backend=MongoBackend(uri=uri, db_name=db_name, collection_prefix=prefix))
    return HostelEngine()


def _snapshot_path() -> Optional[str]:
    # Snapshots only apply to the in-memory backend; MongoDB persists itself.
    if os.getenv("DB_BACKEND", "memory").lower() != "memory":
        return None
    return os.getenv("SNAPSHOT_PATH") or None


hub = get_engine()


@asynccontextmanager
async def lifespan(app: FastAPI):
    path = _snapshot_path()
    if path and load_snapshot(hub, path):
        logger.info("Loaded snapshot from %s", path)
    if os.getenv("SEED_DEFAULTS", "0") == "1":
        logger.info("Seeded defaults: %s", seed_defaults(hub))
    yield
    if path:
        save_snapshot(hub, path)


app = FastAPI(title="Hostel Hub", lifespan=lifespan)

# Enable CORS for local dev if needed
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------- Actor ----------


def get_actor(
    x_role: str = Header(default=ROLE_ADMIN),
    x_resident_id: Optional[int] = Header(default=None),
) -> ActorContext:
    try:
        return ActorContext(role=x_role.lower(), resident_id=x_resident_id)
    except InvalidArgument as e:
        raise HTTPException(status_code=400, detail=str(e))


def require_admin(actor: ActorContext = Depends(get_actor)) -> ActorContext:
    if not actor.is_admin:
        raise HTTPException(status_code=403, detail="Administrator role required")
    return actor


# ---------- Pydantic Schemas ----------


def _v_iso_date(v: str) -> str:
    parse_date(v)
    return v


class RoomIn(BaseModel):
    number: str
    category: str = ""
    capacity: Union[int, str]


class ResidentIn(BaseModel):
    name: str
    email: str


class AllocationIn(BaseModel):
    room_id: Optional[int] = None


class AttendanceIn(BaseModel):
    date: str  # YYYY-MM-DD
    present: bool

    @field_validator("date")
    @classmethod
    def _v_date(cls, v: str) -> str:
        return _v_iso_date(v)


class ComplaintIn(BaseModel):
    title: str
    message: str = ""
    resident_id: Optional[int] = None  # admins filing on someone's behalf


class NoticeIn(BaseModel):
    text: str


def _day(date: Optional[str]) -> str:
    if date is None:
        return today()
    try:
        return _v_iso_date(date)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid date (expected YYYY-MM-DD): {date}")


# ---------- Rooms ----------


@app.get("/api/rooms")
def list_rooms():
    return [r.to_doc() for r in hub.rooms()]


@app.post("/api/rooms", status_code=201)
def create_room(payload: RoomIn, actor: ActorContext = Depends(require_admin)):
    try:
        return hub.register_room(payload.number, payload.category, payload.capacity).to_doc()
    except DuplicateKey as e:
        raise HTTPException(status_code=409, detail=str(e))
    except InvalidArgument as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.delete("/api/rooms/{room_id}")
def delete_room(room_id: int, actor: ActorContext = Depends(require_admin)):
    return {"ok": hub.delete_room(room_id)}


@app.get("/api/rooms/usage")
def room_usage():
    return [
        {**u.room.to_doc(), "occupancy": u.occupancy, "percent": u.percent}
        for u in HostelAnalytics(hub).room_usage()
    ]


# ---------- Residents ----------


@app.get("/api/residents")
def list_residents(q: Optional[str] = None, actor: ActorContext = Depends(require_admin)):
    return [r.to_doc() for r in hub.search_residents(q)]


@app.post("/api/residents", status_code=201)
def create_resident(payload: ResidentIn, actor: ActorContext = Depends(require_admin)):
    try:
        return hub.register_resident(payload.name, payload.email).to_doc()
    except DuplicateKey as e:
        raise HTTPException(status_code=409, detail=str(e))
    except InvalidArgument as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.delete("/api/residents/{resident_id}")
def delete_resident(resident_id: int, actor: ActorContext = Depends(require_admin)):
    return {"ok": hub.delete_resident(resident_id)}


@app.post("/api/residents/{resident_id}/allocation")
def allocate(resident_id: int, payload: AllocationIn, actor: ActorContext = Depends(require_admin)):
    try:
        result = hub.allocate(resident_id, payload.room_id)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    if result.status == NOT_FOUND:
        raise HTTPException(status_code=404, detail=f"Unknown resident: {resident_id}")
    if result.status == CAPACITY_EXCEEDED:
        raise HTTPException(status_code=409, detail="This room is already at full capacity.")
    return {"status": result.status, "from": result.previous_room_id, "to": result.room_id}


@app.get("/api/me")
def my_status(date: Optional[str] = None, actor: ActorContext = Depends(get_actor)):
    if actor.is_admin:
        raise HTTPException(status_code=400, detail="Only residents have a personal overview")
    try:
        ov = hub.resident_overview(actor.resident_id, _day(date))
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {
        "resident": ov.resident.to_doc(),
        "room": ov.room.to_doc() if ov.room else None,
        "roommates": [r.to_doc() for r in ov.roommates],
        "present": ov.present,
    }


# ---------- Attendance ----------


@app.get("/api/attendance")
def attendance_roster(date: Optional[str] = None, actor: ActorContext = Depends(get_actor)):
    day = _day(date)
    return [
        {"resident_id": r.id, "name": r.name, "room_id": r.room_id, "date": day, "present": present}
        for r, present in hub.attendance_roster(actor, day)
    ]


@app.put("/api/attendance/{resident_id}")
def toggle_attendance(resident_id: int, payload: AttendanceIn, actor: ActorContext = Depends(require_admin)):
    return {"ok": hub.toggle_attendance(resident_id, payload.date, payload.present)}


# ---------- Complaints ----------


@app.get("/api/complaints")
def list_complaints(actor: ActorContext = Depends(get_actor)):
    return [c.to_doc() for c in hub.complaints_for(actor)]


@app.post("/api/complaints", status_code=201)
def file_complaint(payload: ComplaintIn, actor: ActorContext = Depends(get_actor)):
    resident_id = payload.resident_id if actor.is_admin else actor.resident_id
    if resident_id is None:
        raise HTTPException(status_code=400, detail="resident_id is required")
    resident = hub.get_resident(resident_id)
    if resident is None:
        raise HTTPException(status_code=404, detail=f"Unknown resident: {resident_id}")
    try:
        return hub.file_complaint(resident.id, resident.name, payload.title, payload.message).to_doc()
    except InvalidArgument as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/api/complaints/{complaint_id}/resolve")
def resolve_complaint(complaint_id: int, actor: ActorContext = Depends(require_admin)):
    return {"ok": hub.resolve_complaint(complaint_id)}


# ---------- Notices ----------


@app.get("/api/notices")
def list_notices():
    return [n.to_doc() for n in hub.notices()]


@app.post("/api/notices", status_code=201)
def post_notice(payload: NoticeIn, actor: ActorContext = Depends(require_admin)):
    try:
        return hub.post_notice(payload.text).to_doc()
    except InvalidArgument as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.delete("/api/notices/{notice_id}")
def delete_notice(notice_id: int, actor: ActorContext = Depends(require_admin)):
    return {"ok": hub.delete_notice(notice_id)}


# ---------- Audit + Reporting ----------


@app.get("/api/audit")
def audit_log(actor: ActorContext = Depends(require_admin)):
    return [e.to_doc() for e in hub.audit_log()]


@app.delete("/api/audit")
def clear_audit(actor: ActorContext = Depends(require_admin)):
    return {"removed": hub.clear_audit_log()}


@app.get("/api/stats")
def stats(date: Optional[str] = None):
    analytics = HostelAnalytics(hub)
    day = _day(date)
    return {
        **analytics.stats(day),
        "date": day,
        "complaints": analytics.complaint_counts(),
        "recent": [e.to_doc() for e in analytics.recent_activity()],
    }


@app.post("/api/mock/seed")
def seed_mock_data(actor: ActorContext = Depends(require_admin)):
    counts = seed_defaults(hub)
    return {"inserted": counts, "stats": HostelAnalytics(hub).stats(today())}
