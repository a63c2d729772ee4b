import pytest

from hostel_hub import (
    AuditLogEntry,
    ConstraintViolation,
    InMemoryCollection,
    InvalidArgument,
    NotFound,
    Resident,
    Room,
)


@pytest.fixture()
def residents():
    return InMemoryCollection("residents", Resident, unique=("email",), indices=("id", "room_id"))


def test_insert_assigns_increasing_ids(residents):
    a = residents.insert(Resident("A", "a@example.com"))
    b = residents.insert(Resident("B", "b@example.com"))
    assert (a.id, b.id) == (1, 2)
    assert residents.count() == 2


def test_unique_field_rejected_and_count_unchanged(residents):
    residents.insert(Resident("A", "a@example.com"))
    with pytest.raises(ConstraintViolation) as exc:
        residents.insert(Resident("Other A", "a@example.com"))
    assert exc.value.field == "email"
    assert residents.count() == 1


def test_update_rechecks_uniqueness(residents):
    residents.insert(Resident("A", "a@example.com"))
    b = residents.insert(Resident("B", "b@example.com"))
    b.email = "a@example.com"
    with pytest.raises(ConstraintViolation):
        residents.update(b)
    assert residents.get(b.id).email == "b@example.com"


def test_find_returns_insertion_order_and_supports_ne(residents):
    for i, room in enumerate([2, None, 1, 2]):
        residents.insert(Resident(f"R{i}", f"r{i}@example.com", room_id=room))
    assert [r.name for r in residents.find({"room_id": 2})] == ["R0", "R3"]
    assert [r.name for r in residents.find({"room_id": {"$ne": None}})] == ["R0", "R2", "R3"]
    assert [r.name for r in residents.find({"room_id": {"$in": [1, None]}})] == ["R1", "R2"]
    assert residents.find_one({"room_id": 5}) is None


def test_index_follows_updates(residents):
    r = residents.insert(Resident("A", "a@example.com", room_id=1))
    r.room_id = 2
    residents.update(r)
    assert residents.find({"room_id": 1}) == []
    assert [x.id for x in residents.find({"room_id": 2})] == [r.id]
    # updating keeps the original position
    residents.insert(Resident("B", "b@example.com", room_id=2))
    r.name = "A2"
    residents.update(r)
    assert [x.name for x in residents.find()] == ["A2", "B"]


def test_returned_records_are_copies(residents):
    r = residents.insert(Resident("A", "a@example.com"))
    r.room_id = 9
    assert residents.get(r.id).room_id is None


def test_update_and_remove_unknown_raise_not_found(residents):
    with pytest.raises(NotFound):
        residents.update(Resident("Ghost", "ghost@example.com", id=42))
    with pytest.raises(NotFound):
        residents.remove(Resident("Ghost", "ghost@example.com", id=42))


def test_remove_and_count_with_query(residents):
    a = residents.insert(Resident("A", "a@example.com", room_id=1))
    residents.insert(Resident("B", "b@example.com", room_id=1))
    residents.remove(a)
    assert residents.count({"room_id": 1}) == 1
    assert residents.get(a.id) is None
    # the email is free again once the holder is gone
    residents.insert(Resident("A again", "a@example.com"))


def test_clear_does_not_reuse_ids():
    logs = InMemoryCollection("audit_log", AuditLogEntry)
    logs.insert(AuditLogEntry("REGISTER", "residents"))
    logs.insert(AuditLogEntry("REGISTER", "residents"))
    assert logs.clear() == 2
    assert logs.count() == 0
    assert logs.insert(AuditLogEntry("REGISTER", "residents")).id == 3


def test_explicit_id_clash_is_rejected():
    rooms = InMemoryCollection("rooms", Room, unique=("number",))
    rooms.insert(Room("101", "Single", 1, id=7))
    with pytest.raises(ConstraintViolation):
        rooms.insert(Room("102", "Single", 1, id=7))
    assert rooms.insert(Room("103", "Single", 1)).id == 8


def test_unsupported_operator(residents):
    residents.insert(Resident("A", "a@example.com"))
    with pytest.raises(InvalidArgument):
        residents.find({"room_id": {"$gt": 1}})
