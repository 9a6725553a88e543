from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.models.entities import BookedClass, CandidateAssignment
from app.storage.backend import BackendClient, BackendError, get_backend
from app.storage.session_store import MemorySessionStore, get_session_store

SGT = ZoneInfo("Asia/Singapore")


def at(hhmm: str, day: int = 10) -> datetime:
    """Time on 2025-03-10 (or another March day) in Singapore time."""
    hour, minute = (int(part) for part in hhmm.split(":"))
    return datetime(2025, 3, day, hour, minute, tzinfo=SGT)


def booking(class_id: str, start: str, end: Optional[str], branch_id: Optional[str] = "branch-b", **kwargs) -> BookedClass:
    return BookedClass(
        class_id=class_id,
        subject=kwargs.pop("subject", "Mathematics"),
        start_time=at(start),
        end_time=at(end) if end else None,
        duration_minutes=kwargs.pop("duration_minutes", 60),
        branch_id=branch_id,
        **kwargs,
    )


def class_payload(
    class_id: str, start: str, duration: int = 60, tutor_id: Optional[str] = "tutor-1", day: int = 10, **kwargs
) -> Dict[str, Any]:
    """Class record as the backend returns it."""
    payload = {
        "id": class_id,
        "subject": kwargs.pop("subject", "Mathematics"),
        "level": kwargs.pop("level", None),
        "tutor_id": tutor_id,
        "start_time": at(start, day).isoformat(),
        "end_time": None,
        "duration_minutes": duration,
        "capacity": 10,
        "branch_id": kwargs.pop("branch_id", "branch-a"),
        "branch_name": kwargs.pop("branch_name", "Tampines"),
        "active": True,
        "enrolled_count": "0",
    }
    payload.update(kwargs)
    return payload


def staff_payload(staff_id: str, first_name: str, last_name: str, active: bool = True) -> Dict[str, Any]:
    return {
        "id": staff_id,
        "email": f"{first_name.lower()}@tuition.test",
        "first_name": first_name,
        "last_name": last_name,
        "active": active,
    }


def _within_dates(payload: Dict[str, Any], params: Dict[str, str]) -> bool:
    """Backend filter: UTC date of the start time within startDate..endDate."""
    day = datetime.fromisoformat(payload["start_time"]).astimezone(timezone.utc).date().isoformat()
    return params.get("startDate", day) <= day <= params.get("endDate", day)


class FakeBackend(BackendClient):
    """In-memory stand-in for the tuition center REST API."""

    def __init__(self):
        super().__init__("http://backend.test/api", token="test-token")
        self.classes: Dict[str, Dict[str, Any]] = {}
        self.staff: Dict[str, Dict[str, Any]] = {}
        self.unassigned: List[Dict[str, Any]] = []
        self.failures: Dict[str, BackendError] = {}
        self.assignments: List[Dict[str, str]] = []
        self.calls: List[tuple] = []
        self.on_list_classes: Optional[Callable[[], None]] = None

    def fail(self, path: str, message: str = "Failed to fetch classes", status_code: int = 500) -> None:
        self.failures[path] = BackendError(message, status_code=status_code)

    def request(self, method, path, action, params=None, json=None):
        self.calls.append((method, path, params, json))
        if path in self.failures:
            raise self.failures[path]

        if method == "GET" and path == "/classes":
            if self.on_list_classes is not None:
                self.on_list_classes()
            return [c for c in self.classes.values() if _within_dates(c, params or {})]
        if method == "GET" and path.startswith("/classes/"):
            class_id = path.rsplit("/", 1)[-1]
            if class_id not in self.classes:
                raise BackendError("Class not found", status_code=404)
            return self.classes[class_id]
        if method == "GET" and path == "/admin/classes/unassigned":
            return self.unassigned
        if method == "GET" and path == "/admin/staff":
            return list(self.staff.values())
        if method == "GET" and path.startswith("/admin/staff/"):
            staff_id = path.rsplit("/", 1)[-1]
            if staff_id not in self.staff:
                raise BackendError("Staff member not found", status_code=404)
            return self.staff[staff_id]
        if method == "PUT" and path.endswith("/assign-tutor"):
            class_id = path.split("/")[3]
            self.assignments.append({"class_id": class_id, "tutor_id": json["tutorId"]})
            self.classes[class_id]["tutor_id"] = json["tutorId"]
            staff = self.staff[json["tutorId"]]
            subject = self.classes[class_id]["subject"]
            return {"message": f"{staff['first_name']} {staff['last_name']} assigned to {subject} class successfully"}
        raise BackendError("HTTP error! status: 404", status_code=404)


@pytest.fixture
def clock():
    return at


@pytest.fixture
def make_booking():
    return booking


@pytest.fixture
def make_class():
    return class_payload


@pytest.fixture
def candidate():
    """Candidate from the worked examples: 14:00 for 60 minutes at branch A."""
    return CandidateAssignment(
        class_id="class-new",
        tutor_id="tutor-1",
        start_time=at("14:00"),
        duration_minutes=60,
        branch_id="branch-a",
    )


@pytest.fixture
def backend():
    """Backend with one unassigned class, two active tutors and one inactive."""
    fake = FakeBackend()
    fake.classes["class-new"] = class_payload(
        "class-new", "14:00", tutor_id=None, subject="Science", level="P5"
    )
    fake.unassigned = [
        {
            "id": "class-new",
            "subject": "Science",
            "level": "P5",
            "start_time": at("14:00").isoformat(),
            "duration_minutes": 60,
            "capacity": 10,
            "branch_name": "Tampines",
            "branch_address": "1 Tampines Ave",
            "enrolled_count": "4",
        }
    ]
    fake.staff["tutor-1"] = staff_payload("tutor-1", "Jane", "Tan")
    fake.staff["tutor-2"] = staff_payload("tutor-2", "Ravi", "Kumar")
    fake.staff["tutor-3"] = staff_payload("tutor-3", "Old", "Timer", active=False)
    return fake


@pytest.fixture
def store():
    return MemorySessionStore(ttl_seconds=600)


@pytest.fixture
def client(backend, store):
    app.dependency_overrides[get_backend] = lambda: backend
    app.dependency_overrides[get_session_store] = lambda: store
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
