import json as jsonlib
from datetime import date

import pytest
import requests

from app.storage.backend import BackendClient, BackendError, bearer_token
from app.storage.repositories import ClassRepository, StaffRepository


class StubResponse:
    def __init__(self, status_code=200, payload=None, text=None):
        self.status_code = status_code
        self.ok = status_code < 400
        if text is not None:
            self.content = text.encode()
        elif payload is not None:
            self.content = jsonlib.dumps(payload).encode()
        else:
            self.content = b""

    def json(self):
        return jsonlib.loads(self.content)


class StubSession:
    """Records requests and replays queued responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def request(self, method, url, **kwargs):
        self.requests.append((method, url, kwargs))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def close(self):
        pass


def make_client(*responses, token="abc"):
    session = StubSession(*responses)
    return BackendClient("http://backend.test/api/", token=token, session=session), session


class TestBackendClient:
    """Request building and error mapping."""

    def test_forwards_bearer_token(self):
        client, session = make_client(StubResponse(payload=[]))
        client.get("/classes", "fetching classes", params={"startDate": "2025-03-10"})

        method, url, kwargs = session.requests[0]
        assert method == "GET"
        assert url == "http://backend.test/api/classes"
        assert kwargs["headers"]["Authorization"] == "Bearer abc"
        assert kwargs["params"] == {"startDate": "2025-03-10"}
        assert kwargs["timeout"] == 10.0

    def test_no_token_no_auth_header(self):
        client, session = make_client(StubResponse(payload=[]), token=None)
        client.get("/classes", "fetching classes")
        assert "Authorization" not in session.requests[0][2]["headers"]

    def test_unauthorized(self):
        client, _ = make_client(StubResponse(401, {"error": "Invalid token"}))
        with pytest.raises(BackendError) as exc_info:
            client.get("/classes", "fetching classes")
        assert exc_info.value.message == "Session expired. Please login again."
        assert exc_info.value.status_code == 401

    def test_error_payload_message(self):
        client, _ = make_client(StubResponse(404, {"error": "Class not found or inactive"}))
        with pytest.raises(BackendError) as exc_info:
            client.put("/admin/classes/x/assign-tutor", "assigning tutor", json={"tutorId": "t"})
        assert exc_info.value.message == "Class not found or inactive"
        assert exc_info.value.status_code == 404

    def test_error_without_payload(self):
        client, _ = make_client(StubResponse(503, text="Service Unavailable"))
        with pytest.raises(BackendError) as exc_info:
            client.get("/classes", "fetching classes")
        assert exc_info.value.message == "HTTP error! status: 503"

    def test_network_failure(self):
        client, _ = make_client(requests.exceptions.ConnectionError("refused"))
        with pytest.raises(BackendError) as exc_info:
            client.get("/classes", "fetching classes")
        assert exc_info.value.message == "An unexpected error occurred while fetching classes"
        assert exc_info.value.status_code is None

    def test_empty_body(self):
        client, _ = make_client(StubResponse(204))
        assert client.put("/admin/classes/x/assign-tutor", "assigning tutor") is None

    @pytest.mark.parametrize("header,expected", [
        ("Bearer abc.def", "abc.def"),
        ("bearer xyz", "xyz"),
        ("Basic Zm9v", None),
        ("Bearer", None),
        (None, None),
    ])
    def test_bearer_token(self, header, expected):
        assert bearer_token(header) == expected


class TestClassRepository:
    """Class listing and tutor assignment through the backend."""

    def test_list_between(self, make_class):
        client, session = make_client(StubResponse(payload=[make_class("c1", "10:00")]))
        classes = ClassRepository(client).list_between(date(2025, 3, 10), date(2025, 3, 11))

        assert [c.id for c in classes] == ["c1"]
        assert session.requests[0][2]["params"] == {"startDate": "2025-03-10", "endDate": "2025-03-11"}

    def test_get_missing_class(self):
        client, _ = make_client(StubResponse(404, {"error": "Class not found"}))
        assert ClassRepository(client).get_by_id("nope") is None

    def test_get_class_server_error(self):
        client, _ = make_client(StubResponse(500, {"error": "Failed to fetch class"}))
        with pytest.raises(BackendError):
            ClassRepository(client).get_by_id("c1")

    def test_malformed_listing(self):
        client, _ = make_client(StubResponse(payload=[{"id": "c1"}]))
        with pytest.raises(BackendError) as exc_info:
            ClassRepository(client).list_between(date(2025, 3, 10), date(2025, 3, 10))
        assert exc_info.value.message == "Unexpected response while fetching classes"

    def test_unassigned_counts_are_numbers(self, clock):
        payload = [{
            "id": "c1",
            "subject": "Science",
            "start_time": clock("14:00").isoformat(),
            "duration_minutes": 60,
            "capacity": 10,
            "branch_name": "Tampines",
            "enrolled_count": "4",
        }]
        client, _ = make_client(StubResponse(payload=payload))
        [record] = ClassRepository(client).list_unassigned()
        assert record.enrolled_count == 4

    def test_assign_tutor(self):
        client, session = make_client(StubResponse(payload={"message": "Jane Tan assigned to Science class successfully"}))
        message = ClassRepository(client).assign_tutor("c1", "tutor-1")

        method, url, kwargs = session.requests[0]
        assert method == "PUT"
        assert url == "http://backend.test/api/admin/classes/c1/assign-tutor"
        assert kwargs["json"] == {"tutorId": "tutor-1"}
        assert message == "Jane Tan assigned to Science class successfully"


class TestStaffRepository:
    """Tutor lookups."""

    def test_list_active_only(self):
        payload = [
            {"id": "t1", "email": "a@x", "first_name": "Jane", "last_name": "Tan", "active": True},
            {"id": "t2", "email": "b@x", "first_name": "Old", "last_name": "Timer", "active": False},
        ]
        client, _ = make_client(StubResponse(payload=payload))
        assert [s.id for s in StaffRepository(client).list_active()] == ["t1"]

    def test_get_by_id(self):
        payload = {"id": "t1", "email": "a@x", "first_name": "Jane", "last_name": "Tan", "active": True}
        client, _ = make_client(StubResponse(payload=payload))
        staff = StaffRepository(client).get_by_id("t1")
        assert staff.full_name == "Jane Tan"

    def test_get_missing(self):
        client, _ = make_client(StubResponse(404, {"error": "Staff member not found"}))
        assert StaffRepository(client).get_by_id("nope") is None
