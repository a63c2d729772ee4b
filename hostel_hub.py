"""
Hostel Hub Resident Management

Implements:
- Room and resident registry with unique room numbers and emails
- Bed allocation bounded by room capacity
- Cascading deletes (rooms unassign their residents, residents drop their attendance)
- Daily attendance, complaint lifecycle and a notice board
- Append-only audit log written by every mutation
- Occupancy and attendance analytics computed from live data
"""

from __future__ import annotations

import copy
import json
import logging
import math
import threading
from collections import Counter
from dataclasses import dataclass, field, asdict, fields
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple, Union, runtime_checkable

from pymongo import MongoClient, ASCENDING, ReturnDocument
from pymongo.collection import Collection as MongoCollectionHandle
from pymongo.errors import DuplicateKeyError

logger = logging.getLogger(__name__)

SNAPSHOT_FORMAT = 1

# Allocation outcomes
ALLOCATED = "Allocated"
UNASSIGNED = "Unassigned"
UNCHANGED = "Unchanged"
CAPACITY_EXCEEDED = "CapacityExceeded"
NOT_FOUND = "NotFound"

# Complaint states
PENDING = "Pending"
RESOLVED = "Resolved"

ROLE_ADMIN = "admin"
ROLE_RESIDENT = "resident"


# -----------------------------
# Errors
# -----------------------------


class HostelError(Exception):
    """Base class for every error raised by the hostel engine."""


class ConstraintViolation(HostelError, ValueError):
    """A record clashes with a declared unique field of its collection."""

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class DuplicateKey(ConstraintViolation):
    """A room number or resident email is already registered."""


class InvalidArgument(HostelError, ValueError):
    """Malformed numeric or required-field input."""


class NotFound(HostelError, KeyError):
    """A referenced record does not exist."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


# -----------------------------
# Data Models
# -----------------------------


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _Document:
    """Conversion between entity dataclasses and stored documents."""

    TIMESTAMPS: Tuple[str, ...] = ()

    def to_doc(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]):
        names = {f.name for f in fields(cls)}
        data = {k: v for k, v in doc.items() if k in names}
        for key in cls.TIMESTAMPS:
            if isinstance(data.get(key), str):
                data[key] = datetime.fromisoformat(data[key])
        return cls(**data)


@dataclass
class Room(_Document):
    """A room with `capacity` beds. Room numbers are unique."""

    number: str
    category: str
    capacity: int
    id: Optional[int] = None


@dataclass
class Resident(_Document):
    """A hostel resident.

    `room_id` is a lookup reference to a Room, never ownership: deleting the
    room clears it, deleting the resident leaves the room alone.
    """

    name: str
    email: str
    room_id: Optional[int] = None
    id: Optional[int] = None


@dataclass
class AttendanceRecord(_Document):
    """Presence of a resident on one ISO date. Absence is the lack of a record."""

    resident_id: int
    date: str
    id: Optional[int] = None


@dataclass
class Complaint(_Document):
    """A complaint filed by a resident.

    Status transitions: Pending -> Resolved (terminal).
    `resident_name` is a snapshot taken at filing time so the complaint stays
    readable after the resident is removed.
    """

    TIMESTAMPS = ("filed_at", "resolved_at")

    resident_id: Optional[int]
    resident_name: str
    title: str
    message: str = ""
    status: str = PENDING
    filed_at: datetime = field(default_factory=utcnow)
    resolved_at: Optional[datetime] = None
    id: Optional[int] = None


@dataclass
class Notice(_Document):
    TIMESTAMPS = ("posted_at",)

    text: str
    posted_at: datetime = field(default_factory=utcnow)
    id: Optional[int] = None


@dataclass
class AuditLogEntry(_Document):
    """One committed mutation. Append-only; the log is only ever cleared in bulk."""

    TIMESTAMPS = ("timestamp",)

    action: str
    target_collection: str
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)
    id: Optional[int] = None


# name -> (model, unique fields, index hints)
SCHEMA: Dict[str, Tuple[type, Tuple[str, ...], Tuple[str, ...]]] = {
    "rooms": (Room, ("number",), ("id",)),
    "residents": (Resident, ("email",), ("id", "room_id")),
    "attendance": (AttendanceRecord, (), ("date", "resident_id")),
    "complaints": (Complaint, (), ("resident_id", "status")),
    "notices": (Notice, (), ()),
    "audit_log": (AuditLogEntry, (), ("action",)),
}


@dataclass
class AllocationResult:
    """Outcome of `HostelEngine.allocate`.

    A full room is reported here as CapacityExceeded rather than raised; the
    resident's previous allocation is untouched in that case.
    """

    status: str
    resident_id: int
    room_id: Optional[int]
    previous_room_id: Optional[int] = None
    resident: Optional[Resident] = None

    @property
    def ok(self) -> bool:
        return self.status in (ALLOCATED, UNASSIGNED, UNCHANGED)


@dataclass
class ActorContext:
    """Who is calling: an administrator, or a resident scoped to their own records."""

    role: str = ROLE_ADMIN
    resident_id: Optional[int] = None
    name: Optional[str] = None

    def __post_init__(self) -> None:
        if self.role not in (ROLE_ADMIN, ROLE_RESIDENT):
            raise InvalidArgument(f"Unknown role: {self.role}")
        if self.role == ROLE_RESIDENT and self.resident_id is None:
            raise InvalidArgument("A resident actor needs a resident_id")

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


@dataclass
class ResidentOverview:
    resident: Resident
    room: Optional[Room]
    roommates: List[Resident]
    present: bool


@dataclass
class RoomUsage:
    room: Room
    occupancy: int
    percent: int


# -----------------------------
# Collection Store
# -----------------------------


def _matches(record: Any, query: Optional[Dict[str, Any]]) -> bool:
    """Evaluate a Mongo-style query: field equality plus $ne / $in / $nin."""
    for key, cond in (query or {}).items():
        value = getattr(record, key, None)
        if isinstance(cond, dict):
            for op, operand in cond.items():
                if op == "$ne":
                    if value == operand:
                        return False
                elif op == "$in":
                    if value not in operand:
                        return False
                elif op == "$nin":
                    if value in operand:
                        return False
                else:
                    raise InvalidArgument(f"Unsupported query operator: {op}")
        elif value != cond:
            return False
    return True


@runtime_checkable
class Collection(Protocol):
    name: str

    def insert(self, record: Any) -> Any: ...
    def find_one(self, query: Optional[Dict[str, Any]] = None) -> Optional[Any]: ...
    def find(self, query: Optional[Dict[str, Any]] = None) -> List[Any]: ...
    def get(self, record_id: Any) -> Optional[Any]: ...
    def update(self, record: Any) -> Any: ...
    def remove(self, record: Any) -> None: ...
    def count(self, query: Optional[Dict[str, Any]] = None) -> int: ...
    def clear(self) -> int: ...


class InMemoryCollection:
    """Default in-memory collection.

    Records are kept in insertion order and handed out as copies, so changes
    only reach the store through `update`. Fields listed in `indices` get a
    hash index that narrows equality lookups.
    """

    def __init__(
        self,
        name: str,
        model: type,
        unique: Iterable[str] = (),
        indices: Iterable[str] = (),
    ) -> None:
        self.name = name
        self.model = model
        self.unique = tuple(unique)
        self.indices = tuple(f for f in dict.fromkeys(tuple(indices) + self.unique) if f != "id")
        self._records: Dict[int, Any] = {}
        self._seq: Dict[int, int] = {}
        self._index: Dict[str, Dict[Any, set]] = {f: {} for f in self.indices}
        self._next_id = 1
        self._next_seq = 0

    def _index_add(self, record: Any) -> None:
        for f, buckets in self._index.items():
            buckets.setdefault(getattr(record, f), set()).add(record.id)

    def _index_discard(self, record: Any) -> None:
        for f, buckets in self._index.items():
            bucket = buckets.get(getattr(record, f))
            if bucket is not None:
                bucket.discard(record.id)
                if not bucket:
                    del buckets[getattr(record, f)]

    def _candidates(self, query: Optional[Dict[str, Any]]) -> List[Any]:
        query = query or {}
        if "id" in query and not isinstance(query["id"], dict):
            rec = self._records.get(query["id"])
            return [rec] if rec is not None else []
        ids: Optional[set] = None
        for key, cond in query.items():
            if key in self._index and not isinstance(cond, (dict, list)):
                bucket = self._index[key].get(cond, set())
                ids = set(bucket) if ids is None else ids & bucket
        if ids is None:
            return list(self._records.values())
        return [self._records[i] for i in sorted(ids, key=self._seq.__getitem__)]

    def _check_unique(self, record: Any) -> None:
        for f in self.unique:
            value = getattr(record, f)
            if value is None:
                continue
            for other in self._candidates({f: value}):
                if other.id != record.id:
                    raise ConstraintViolation(
                        f"{self.name}.{f} must be unique: {value!r} already exists", field=f
                    )

    def insert(self, record: Any) -> Any:
        record = copy.deepcopy(record)
        if record.id is None:
            record.id = self._next_id
        elif record.id in self._records:
            raise ConstraintViolation(f"{self.name}: id {record.id} already exists", field="id")
        self._check_unique(record)
        self._next_id = max(self._next_id, record.id + 1)
        self._records[record.id] = record
        self._seq[record.id] = self._next_seq
        self._next_seq += 1
        self._index_add(record)
        return copy.deepcopy(record)

    def find_one(self, query: Optional[Dict[str, Any]] = None) -> Optional[Any]:
        for rec in self._candidates(query):
            if _matches(rec, query):
                return copy.deepcopy(rec)
        return None

    def find(self, query: Optional[Dict[str, Any]] = None) -> List[Any]:
        return [copy.deepcopy(r) for r in self._candidates(query) if _matches(r, query)]

    def get(self, record_id: Any) -> Optional[Any]:
        return self.find_one({"id": record_id})

    def update(self, record: Any) -> Any:
        current = self._records.get(record.id)
        if current is None:
            raise NotFound(f"Unknown {self.name} record: {record.id}")
        record = copy.deepcopy(record)
        self._check_unique(record)
        self._index_discard(current)
        self._records[record.id] = record
        self._index_add(record)
        return copy.deepcopy(record)

    def remove(self, record: Any) -> None:
        current = self._records.get(record.id)
        if current is None:
            raise NotFound(f"Unknown {self.name} record: {record.id}")
        self._index_discard(current)
        del self._records[record.id]
        del self._seq[record.id]

    def count(self, query: Optional[Dict[str, Any]] = None) -> int:
        if not query:
            return len(self._records)
        return sum(1 for r in self._candidates(query) if _matches(r, query))

    def clear(self) -> int:
        # Ids keep counting up so cleared ids are never reused.
        removed = len(self._records)
        self._records.clear()
        self._seq.clear()
        self._index = {f: {} for f in self.indices}
        return removed


class MongoCollection:
    """MongoDB-backed collection using PyMongo.

    Insertion order is id order; ids come from a shared `counters` collection.
    Unique fields are enforced by unique indexes.
    """

    def __init__(
        self,
        handle: MongoCollectionHandle,
        counters: MongoCollectionHandle,
        name: str,
        model: type,
        unique: Iterable[str] = (),
        indices: Iterable[str] = (),
    ) -> None:
        self.name = name
        self.model = model
        self.unique = tuple(unique)
        self.indices = tuple(indices)
        self.c = handle
        self.counters = counters
        self._ensure_indexes()

    def _ensure_indexes(self) -> None:
        self.c.create_index("id", unique=True)
        for f in self.unique:
            self.c.create_index(f, unique=True)
        for f in self.indices:
            if f != "id" and f not in self.unique:
                self.c.create_index([(f, ASCENDING)])

    def _next_id(self) -> int:
        doc = self.counters.find_one_and_update(
            {"_id": self.name},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return int(doc["seq"])

    def _from(self, doc: Dict[str, Any]) -> Any:
        doc.pop("_id", None)
        return self.model.from_doc(doc)

    def _violation(self, err: DuplicateKeyError) -> ConstraintViolation:
        key = (err.details or {}).get("keyPattern") or {}
        f = next(iter(key), None)
        return ConstraintViolation(f"{self.name}.{f} must be unique", field=f)

    def insert(self, record: Any) -> Any:
        record = copy.deepcopy(record)
        if record.id is None:
            record.id = self._next_id()
        else:
            self.counters.update_one({"_id": self.name}, {"$max": {"seq": record.id}}, upsert=True)
        try:
            self.c.insert_one(record.to_doc())
        except DuplicateKeyError as e:
            raise self._violation(e) from e
        return record

    def find_one(self, query: Optional[Dict[str, Any]] = None) -> Optional[Any]:
        doc = self.c.find_one(query or {}, sort=[("id", ASCENDING)])
        return self._from(doc) if doc else None

    def find(self, query: Optional[Dict[str, Any]] = None) -> List[Any]:
        return [self._from(d) for d in self.c.find(query or {}, sort=[("id", ASCENDING)])]

    def get(self, record_id: Any) -> Optional[Any]:
        return self.find_one({"id": record_id})

    def update(self, record: Any) -> Any:
        try:
            result = self.c.replace_one({"id": record.id}, record.to_doc())
        except DuplicateKeyError as e:
            raise self._violation(e) from e
        if result.matched_count == 0:
            raise NotFound(f"Unknown {self.name} record: {record.id}")
        return copy.deepcopy(record)

    def remove(self, record: Any) -> None:
        if self.c.delete_one({"id": record.id}).deleted_count == 0:
            raise NotFound(f"Unknown {self.name} record: {record.id}")

    def count(self, query: Optional[Dict[str, Any]] = None) -> int:
        return self.c.count_documents(query or {})

    def clear(self) -> int:
        return self.c.delete_many({}).deleted_count


class InMemoryBackend:
    def collection(self, name: str, model: type, unique=(), indices=()) -> Collection:
        return InMemoryCollection(name, model, unique, indices)


class MongoBackend:
    """Collections stored in MongoDB.

    Expected environment variables (see server.py):
    - MONGODB_URI
    - DB_NAME (default: hostel_hub)
    - COLLECTION_PREFIX (optional)
    """

    def __init__(self, uri: str, db_name: str = "hostel_hub", collection_prefix: str = "") -> None:
        self.client = MongoClient(uri, tz_aware=True)
        self.db = self.client[db_name]
        self.prefix = collection_prefix
        self.counters = self.db[f"{collection_prefix}counters"]

    def collection(self, name: str, model: type, unique=(), indices=()) -> Collection:
        return MongoCollection(self.db[f"{self.prefix}{name}"], self.counters, name, model, unique, indices)


# -----------------------------
# Core Engine
# -----------------------------


class HostelEngine:
    """Owns the six collections and every protocol that mutates them.

    Responsibilities:
    - Enforce unique room numbers and resident emails
    - Keep each room at or under capacity during allocation
    - Apply cascades on room and resident deletion
    - Append one audit entry per committed mutation

    Each mutation runs under a single re-entrant lock, so a cascade and its
    audit entry are never observed half-applied.
    """

    def __init__(self, backend: Optional[Any] = None) -> None:
        self.backend = backend or InMemoryBackend()
        self._lock = threading.RLock()
        self.collections: Dict[str, Collection] = {
            name: self.backend.collection(name, model, unique, indices)
            for name, (model, unique, indices) in SCHEMA.items()
        }
        self._rooms = self.collections["rooms"]
        self._residents = self.collections["residents"]
        self._attendance = self.collections["attendance"]
        self._complaints = self.collections["complaints"]
        self._notices = self.collections["notices"]
        self._logs = self.collections["audit_log"]

    def _audit(self, action: str, target: str, details: Dict[str, Any]) -> None:
        """Append an audit entry. Failures are logged, never raised."""
        try:
            self._logs.insert(AuditLogEntry(action=action, target_collection=target, details=details))
        except Exception:
            logger.exception("Audit append failed for %s on %s", action, target)

    # -------- Rooms + Residents --------

    def register_resident(self, name: str, email: str) -> Resident:
        """Register a resident with no room. Emails are unique."""
        name = _required(name, "name")
        email = _required(email, "email")
        with self._lock:
            try:
                resident = self._residents.insert(Resident(name=name, email=email))
            except ConstraintViolation as e:
                raise DuplicateKey("A resident with this email is already registered.", field="email") from e
            self._audit("REGISTER", "residents", {"id": resident.id, "name": resident.name, "email": resident.email})
        logger.info("Registered resident %s <%s>", resident.name, resident.email)
        return resident

    def register_room(self, number: str, category: str, capacity: Union[int, str]) -> Room:
        """Create a room. Capacity must parse as an integer of at least 1."""
        number = _required(number, "number")
        capacity = parse_capacity(capacity)
        with self._lock:
            try:
                room = self._rooms.insert(Room(number=number, category=(category or "").strip(), capacity=capacity))
            except ConstraintViolation as e:
                raise DuplicateKey("This room number already exists.", field="number") from e
            self._audit(
                "CREATE_ROOM",
                "rooms",
                {"id": room.id, "number": room.number, "category": room.category, "capacity": room.capacity},
            )
        logger.info("Created room %s (%s, %d beds)", room.number, room.category, room.capacity)
        return room

    def allocate(self, resident_id: int, room_id: Optional[int]) -> AllocationResult:
        """Move a resident into `room_id`, or out of any room when it is None.

        A room at capacity rejects newcomers with CapacityExceeded; a resident
        already in that room is left as is. An unknown resident is a no-op
        reported as NotFound, an unknown room raises NotFound.
        """
        with self._lock:
            resident = self._residents.get(resident_id)
            if resident is None:
                return AllocationResult(NOT_FOUND, resident_id, room_id)
            if resident.room_id == room_id:
                return AllocationResult(UNCHANGED, resident_id, room_id, room_id, resident)

            if room_id is not None:
                room = self._rooms.get(room_id)
                if room is None:
                    raise NotFound(f"Unknown room: {room_id}")
                occupied = self._residents.count({"room_id": room_id})
                if occupied >= room.capacity:
                    logger.warning("Room %s is full (%d/%d); %s not allocated", room.number, occupied, room.capacity, resident.name)
                    return AllocationResult(CAPACITY_EXCEEDED, resident_id, room_id, resident.room_id, resident)

            previous = resident.room_id
            resident.room_id = room_id
            resident = self._residents.update(resident)
            self._audit("ALLOCATE", "residents", {"id": resident.id, "resident": resident.name, "from": previous, "to": room_id})
        logger.info("Allocated %s: %s -> %s", resident.name, previous, room_id)
        status = ALLOCATED if room_id is not None else UNASSIGNED
        return AllocationResult(status, resident_id, room_id, previous, resident)

    def delete_resident(self, resident_id: int) -> bool:
        """Remove a resident and their attendance. Complaints they filed are kept.

        The caller is responsible for confirming the deletion beforehand.
        """
        with self._lock:
            resident = self._residents.get(resident_id)
            if resident is None:
                return False
            records = self._attendance.find({"resident_id": resident_id})
            for rec in records:
                self._attendance.remove(rec)
            self._residents.remove(resident)
            self._audit(
                "DELETE",
                "residents",
                {"id": resident.id, "name": resident.name, "email": resident.email, "attendance_removed": len(records)},
            )
        logger.info("Deleted resident %s (%d attendance records)", resident.name, len(records))
        return True

    def delete_room(self, room_id: int) -> bool:
        """Remove a room, unassigning everyone who lived in it."""
        with self._lock:
            room = self._rooms.get(room_id)
            if room is None:
                return False
            occupants = self._residents.find({"room_id": room_id})
            for resident in occupants:
                resident.room_id = None
                self._residents.update(resident)
            self._rooms.remove(room)
            self._audit("DROP_ROOM", "rooms", {"id": room.id, "number": room.number, "unassigned": [r.id for r in occupants]})
        logger.info("Dropped room %s (%d residents unassigned)", room.number, len(occupants))
        return True

    # -------- Attendance --------

    def toggle_attendance(self, resident_id: int, day: Union[str, date], present: bool) -> bool:
        """Mark a resident present or absent on `day`. Returns True if anything changed."""
        day = iso_date(day)
        with self._lock:
            if self._residents.get(resident_id) is None:
                return False
            existing = self._attendance.find_one({"resident_id": resident_id, "date": day})
            if present and existing is None:
                self._attendance.insert(AttendanceRecord(resident_id=resident_id, date=day))
                status = "Present"
            elif not present and existing is not None:
                self._attendance.remove(existing)
                status = "Absent"
            else:
                return False
            self._audit("ATTENDANCE", "attendance", {"id": resident_id, "status": status, "date": day})
        logger.debug("Resident %s marked %s on %s", resident_id, status, day)
        return True

    def is_present(self, resident_id: int, day: Union[str, date]) -> bool:
        query = {"resident_id": resident_id, "date": iso_date(day)}
        with self._lock:
            return self._attendance.find_one(query) is not None

    # -------- Complaints --------

    def file_complaint(self, resident_id: Optional[int], resident_name: str, title: str, message: str = "") -> Complaint:
        """File a Pending complaint. The resident's name is stored with it."""
        title = _required(title, "title")
        with self._lock:
            complaint = self._complaints.insert(
                Complaint(
                    resident_id=resident_id,
                    resident_name=(resident_name or "").strip(),
                    title=title,
                    message=(message or "").strip(),
                )
            )
            self._audit("COMPLAINT_FILED", "complaints", {"id": complaint.id, "title": complaint.title, "from": complaint.resident_name})
        logger.info("Complaint %s filed by %s", complaint.id, complaint.resident_name)
        return complaint

    def resolve_complaint(self, complaint_id: int) -> bool:
        """Pending -> Resolved. Unknown or already resolved complaints are left alone."""
        with self._lock:
            complaint = self._complaints.get(complaint_id)
            if complaint is None or complaint.status == RESOLVED:
                return False
            complaint.status = RESOLVED
            complaint.resolved_at = utcnow()
            self._complaints.update(complaint)
            self._audit("COMPLAINT_RESOLVED", "complaints", {"id": complaint.id, "title": complaint.title})
        logger.info("Complaint %s resolved", complaint_id)
        return True

    # -------- Notices --------

    def post_notice(self, text: str) -> Notice:
        text = _required(text, "text")
        with self._lock:
            notice = self._notices.insert(Notice(text=text))
            self._audit("POST_NOTICE", "notices", {"id": notice.id, "text": text[:20]})
        return notice

    def delete_notice(self, notice_id: int) -> bool:
        with self._lock:
            notice = self._notices.get(notice_id)
            if notice is None:
                return False
            self._notices.remove(notice)
            self._audit("DELETE_NOTICE", "notices", {"id": notice_id})
        return True

    # -------- Audit --------

    def clear_audit_log(self) -> int:
        """Bulk clear of the audit log; the only way entries are ever removed."""
        with self._lock:
            removed = self._logs.clear()
        logger.info("Cleared %d audit entries", removed)
        return removed

    # -------- Reads --------

    @property
    def lock(self) -> threading.RLock:
        """Hold this to read several collections as one consistent state."""
        return self._lock

    def rooms(self) -> List[Room]:
        with self._lock:
            return self._rooms.find()

    def residents(self) -> List[Resident]:
        with self._lock:
            return self._residents.find()

    def attendance(self, day: Optional[Union[str, date]] = None) -> List[AttendanceRecord]:
        query = {"date": iso_date(day)} if day is not None else None
        with self._lock:
            return self._attendance.find(query)

    def complaints(self) -> List[Complaint]:
        with self._lock:
            return self._complaints.find()

    def notices(self) -> List[Notice]:
        with self._lock:
            return self._notices.find()

    def audit_log(self) -> List[AuditLogEntry]:
        with self._lock:
            return self._logs.find()

    def get_room(self, room_id: int) -> Optional[Room]:
        with self._lock:
            return self._rooms.get(room_id)

    def get_resident(self, resident_id: int) -> Optional[Resident]:
        with self._lock:
            return self._residents.get(resident_id)

    def get_complaint(self, complaint_id: int) -> Optional[Complaint]:
        with self._lock:
            return self._complaints.get(complaint_id)

    def count(self, collection: str, query: Optional[Dict[str, Any]] = None) -> int:
        with self._lock:
            return self.collections[collection].count(query)

    def search_residents(self, query: Optional[str]) -> List[Resident]:
        """Case-insensitive substring match over name and email."""
        needle = (query or "").strip().lower()
        with self._lock:
            residents = self._residents.find()
        if not needle:
            return residents
        return [r for r in residents if needle in r.name.lower() or needle in r.email.lower()]

    def complaints_for(self, actor: ActorContext) -> List[Complaint]:
        with self._lock:
            if actor.is_admin:
                return self._complaints.find()
            return self._complaints.find({"resident_id": actor.resident_id})

    def attendance_roster(self, actor: ActorContext, day: Union[str, date]) -> List[Tuple[Resident, bool]]:
        """(resident, present) pairs for `day`: everyone for admins, only self for residents."""
        day = iso_date(day)
        with self._lock:
            if actor.is_admin:
                residents = self._residents.find()
            else:
                residents = self._residents.find({"id": actor.resident_id})
            present = {rec.resident_id for rec in self._attendance.find({"date": day})}
        return [(r, r.id in present) for r in residents]

    def resident_overview(self, resident_id: int, day: Union[str, date]) -> ResidentOverview:
        day = iso_date(day)
        with self._lock:
            resident = self._residents.get(resident_id)
            if resident is None:
                raise NotFound(f"Unknown resident: {resident_id}")
            room = self._rooms.get(resident.room_id) if resident.room_id is not None else None
            roommates = []
            if room is not None:
                roommates = [r for r in self._residents.find({"room_id": room.id}) if r.id != resident.id]
            present = self.is_present(resident_id, day)
        return ResidentOverview(resident=resident, room=room, roommates=roommates, present=present)

    # -------- Persistence --------

    def snapshot(self) -> Dict[str, Any]:
        """One JSON-ready record array per collection."""
        with self._lock:
            data: Dict[str, Any] = {"format": SNAPSHOT_FORMAT}
            for name, coll in self.collections.items():
                data[name] = [_jsonable(r.to_doc()) for r in coll.find()]
        return data

    def restore(self, data: Dict[str, Any]) -> None:
        """Replace every collection's contents with those of a snapshot.

        The snapshot is loaded into scratch collections first, so a record that
        is malformed or breaks a unique field leaves the live data untouched.
        """
        if data.get("format", SNAPSHOT_FORMAT) != SNAPSHOT_FORMAT:
            raise InvalidArgument(f"Unsupported snapshot format: {data.get('format')}")
        loaded: Dict[str, List[Any]] = {}
        for name, (model, unique, indices) in SCHEMA.items():
            scratch = InMemoryCollection(name, model, unique, indices)
            try:
                for doc in data.get(name, []):
                    scratch.insert(model.from_doc(doc))
            except ConstraintViolation as e:
                raise InvalidArgument(f"Snapshot {name} records clash: {e}") from e
            except (TypeError, ValueError) as e:
                raise InvalidArgument(f"Malformed {name} record in snapshot: {e}") from e
            loaded[name] = scratch.find()
        with self._lock:
            for name, records in loaded.items():
                coll = self.collections[name]
                coll.clear()
                for rec in records:
                    coll.insert(rec)
        logger.info("Restored snapshot: %s", {k: len(v) for k, v in loaded.items()})


# -----------------------------
# Analytics
# -----------------------------


def _percent(part: int, whole: int) -> int:
    # Half-up rounding; round() would round 12.5 down to 12.
    if not whole:
        return 0
    return int(math.floor(100 * part / whole + 0.5))


class HostelAnalytics:
    """Read-only aggregates over the engine's current state, recomputed per call.

    Each aggregate holds the engine lock while it reads, so it never mixes
    state from before and after a mutation.
    """

    def __init__(self, engine: HostelEngine) -> None:
        self.engine = engine

    def total_beds(self) -> int:
        return sum(r.capacity for r in self.engine.rooms())

    def occupied_beds(self) -> int:
        return self.engine.count("residents", {"room_id": {"$ne": None}})

    def occupancy_percent(self) -> int:
        with self.engine.lock:
            return _percent(self.occupied_beds(), self.total_beds())

    def attendance_percent(self, day: Union[str, date]) -> int:
        day = iso_date(day)
        with self.engine.lock:
            present = self.engine.count("attendance", {"date": day})
            return _percent(present, self.engine.count("residents"))

    def free_beds(self) -> int:
        with self.engine.lock:
            return self.total_beds() - self.occupied_beds()

    def room_usage(self) -> List[RoomUsage]:
        """Occupancy per room, in the order rooms are stored."""
        with self.engine.lock:
            residents = self.engine.residents()
            rooms = self.engine.rooms()
        per_room = Counter(r.room_id for r in residents if r.room_id is not None)
        return [
            RoomUsage(room=room, occupancy=per_room[room.id], percent=_percent(per_room[room.id], room.capacity))
            for room in rooms
        ]

    def complaint_counts(self) -> Dict[str, int]:
        counts = {PENDING: 0, RESOLVED: 0}
        for c in self.engine.complaints():
            counts[c.status] = counts.get(c.status, 0) + 1
        return counts

    def recent_activity(self, limit: int = 5) -> List[AuditLogEntry]:
        entries = self.engine.audit_log()
        return list(reversed(entries[-limit:])) if limit > 0 else []

    def stats(self, day: Union[str, date]) -> Dict[str, int]:
        """Dashboard bundle for `day`."""
        day = iso_date(day)
        with self.engine.lock:
            total_beds = self.total_beds()
            occupied = self.occupied_beds()
            attendance = self.attendance_percent(day)
            total_residents = self.engine.count("residents")
        return {
            "occupancy": _percent(occupied, total_beds),
            "attendance": attendance,
            "total_residents": total_residents,
            "free_beds": total_beds - occupied,
        }


# -----------------------------
# Utility helpers
# -----------------------------


def _required(value: Optional[str], name: str) -> str:
    if value is None or not str(value).strip():
        raise InvalidArgument(f"{name} is required")
    return str(value).strip()


def _jsonable(doc: Dict[str, Any]) -> Dict[str, Any]:
    return {k: (v.isoformat() if isinstance(v, datetime) else v) for k, v in doc.items()}


def parse_date(s: str) -> date:
    return datetime.strptime(s, "%Y-%m-%d").date()


def iso_date(value: Union[str, date]) -> str:
    """Normalise a date or `YYYY-MM-DD` string to ISO form."""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    try:
        return parse_date(str(value).strip()).isoformat()
    except ValueError as e:
        raise InvalidArgument(f"Invalid date (expected YYYY-MM-DD): {value!r}") from e


def shift_date(value: Union[str, date], days: int) -> str:
    return (parse_date(iso_date(value)) + timedelta(days=days)).isoformat()


def today() -> str:
    return date.today().isoformat()


def parse_capacity(value: Union[int, str]) -> int:
    """Parse a bed count, rejecting anything that is not a whole number >= 1.

    Strings must be plain decimal digits (surrounding whitespace allowed), so
    "+3" and "3.0" are rejected; integral floats such as 3.0 are accepted.
    """
    if isinstance(value, bool):
        raise InvalidArgument(f"Invalid capacity: {value!r}")
    if isinstance(value, float):
        if not value.is_integer():
            raise InvalidArgument(f"Invalid capacity: {value!r}")
        value = int(value)
    if isinstance(value, str):
        text = value.strip()
        if not text.isdecimal():
            raise InvalidArgument(f"Invalid capacity: {value!r}")
        value = int(text)
    if not isinstance(value, int) or value < 1:
        raise InvalidArgument(f"Capacity must be a whole number of at least 1, got {value!r}")
    return value


# Default records for a fresh install
DEFAULT_ROOMS = [
    ("101", "Single-Deluxe", 1),
    ("102", "Double-Standard", 2),
    ("103", "Double-Standard", 2),
    ("201", "Triple-Budget", 3),
    ("202", "Single-Premium", 1),
]
DEFAULT_RESIDENTS = [
    ("Alice Johnson", "alice@example.com", "101"),
    ("Bob Smith", "bob@example.com", "102"),
    ("Charlie Brown", "charlie@example.com", "103"),
]
DEFAULT_NOTICES = [
    "Mess timings updated: Breakfast 8-10 AM, Lunch 12-2 PM.",
    "Annual Day celebrations start this Friday!",
]


def seed_defaults(engine: HostelEngine) -> Dict[str, int]:
    """Seed default rooms, residents and notices into empty collections.

    Returns counts of inserted records.
    """
    added = {"rooms": 0, "residents": 0, "notices": 0}
    if engine.count("rooms") == 0:
        for number, category, capacity in DEFAULT_ROOMS:
            engine.register_room(number, category, capacity)
            added["rooms"] += 1
    if engine.count("residents") == 0:
        room_ids = {r.number: r.id for r in engine.rooms()}
        for name, email, number in DEFAULT_RESIDENTS:
            resident = engine.register_resident(name, email)
            added["residents"] += 1
            if number in room_ids:
                engine.allocate(resident.id, room_ids[number])
    if engine.count("notices") == 0:
        for text in DEFAULT_NOTICES:
            engine.post_notice(text)
            added["notices"] += 1
    return added


def save_snapshot(engine: HostelEngine, path: Union[str, Path]) -> None:
    path = Path(path)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(engine.snapshot(), indent=2), encoding="utf-8")
    tmp.replace(path)
    logger.info("Saved snapshot to %s", path)


def load_snapshot(engine: HostelEngine, path: Union[str, Path]) -> bool:
    """Restore from a JSON snapshot file. Returns False if the file is missing."""
    path = Path(path)
    if not path.exists():
        return False
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise InvalidArgument(f"Snapshot {path} is not valid JSON: {e}") from e
    engine.restore(data)
    return True
