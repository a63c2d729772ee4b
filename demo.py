"""Demo script to exercise HostelEngine with the default dataset.

Run: python demo.py

Supports two backends:
- In-memory (default)
- MongoDB (set DB_BACKEND=mongodb and MONGODB_URI in .env)
"""

import logging
import os

from dotenv import load_dotenv

from hostel_hub import HostelAnalytics, HostelEngine, MongoBackend, seed_defaults, shift_date, today

load_dotenv()


def run_allocation_scenario(hub: HostelEngine) -> None:
    """Fill a single and a double room, then try to squeeze one more in."""
    a = hub.register_room("A1", "Single", 1)
    b = hub.register_room("B1", "Double", 2)
    x = hub.register_resident("Xavier", "xavier@example.com")
    y = hub.register_resident("Yara", "yara@example.com")
    z = hub.register_resident("Zoe", "zoe@example.com")

    for resident, room in [(x, a), (y, a), (y, b), (z, b)]:
        result = hub.allocate(resident.id, room.id)
        print(f"Allocate {resident.name} -> {room.number}: {result.status}")
    print()


def print_stats(analytics: HostelAnalytics, day: str) -> None:
    s = analytics.stats(day)
    print(f"Dashboard ({day}):")
    print(f"Occupancy: {s['occupancy']}% | Free beds: {s['free_beds']}")
    print(f"Attendance: {s['attendance']}% of {s['total_residents']} residents")
    print()


def print_room_usage(analytics: HostelAnalytics) -> None:
    print("Room Usage:")
    for u in analytics.room_usage():
        print(f"- {u.room.number} ({u.room.category}): {u.occupancy}/{u.room.capacity} ({u.percent}%)")
    print()


def print_recent_activity(analytics: HostelAnalytics) -> None:
    print("Recent Activity:")
    for entry in analytics.recent_activity():
        print(f"- {entry.timestamp:%H:%M:%S} {entry.action} on {entry.target_collection}: {entry.details}")
    print()


def main() -> None:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "WARNING").upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    backend = os.getenv("DB_BACKEND", "memory").lower()
    if backend == "mongodb":
        uri = os.getenv("MONGODB_URI")
        if not uri:
            raise SystemExit("DB_BACKEND=mongodb requires MONGODB_URI in environment/.env")
        hub = HostelEngine(
            backend=MongoBackend(
                uri=uri,
                db_name=os.getenv("DB_NAME", "hostel_hub"),
                collection_prefix=os.getenv("COLLECTION_PREFIX", ""),
            )
        )
    else:
        hub = HostelEngine()
    seed_defaults(hub)
    analytics = HostelAnalytics(hub)

    day = today()
    alice = hub.search_residents("alice")[0]
    hub.toggle_attendance(alice.id, day, True)
    hub.toggle_attendance(alice.id, shift_date(day, -1), True)

    print_stats(analytics, day)
    run_allocation_scenario(hub)
    print_room_usage(analytics)
    print_stats(analytics, day)

    complaint = hub.file_complaint(alice.id, alice.name, "Leaking tap", "Bathroom tap drips all night.")
    hub.resolve_complaint(complaint.id)
    print(f"Complaints: {analytics.complaint_counts()}")
    print()

    print_recent_activity(analytics)


if __name__ == "__main__":
    main()
