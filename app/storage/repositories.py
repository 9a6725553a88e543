from datetime import date
from typing import Any, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from app.models.records import ClassRecord, StaffRecord, UnassignedClassRecord
from app.storage.backend import BackendClient, BackendError

Record = TypeVar("Record", bound=BaseModel)


def parse_records(model: Type[Record], data: Any, action: str) -> List[Record]:
    try:
        return [model.model_validate(row) for row in data or []]
    except ValidationError as exc:
        raise BackendError(f"Unexpected response while {action}") from exc


def parse_record(model: Type[Record], data: Any, action: str) -> Record:
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise BackendError(f"Unexpected response while {action}") from exc


class ClassRepository:
    def __init__(self, backend: BackendClient):
        self.backend = backend

    def get_by_id(self, class_id: str) -> Optional[ClassRecord]:
        try:
            data = self.backend.get(f"/classes/{class_id}", "fetching class")
        except BackendError as exc:
            if exc.status_code == 404:
                return None
            raise
        return parse_record(ClassRecord, data, "fetching class")

    def list_between(self, start_date: date, end_date: date) -> List[ClassRecord]:
        """Classes whose start falls on the given UTC dates, inclusive."""
        params = {"startDate": start_date.isoformat(), "endDate": end_date.isoformat()}
        data = self.backend.get("/classes", "fetching classes", params=params)
        return parse_records(ClassRecord, data, "fetching classes")

    def list_unassigned(self) -> List[UnassignedClassRecord]:
        data = self.backend.get("/admin/classes/unassigned", "fetching unassigned classes")
        return parse_records(UnassignedClassRecord, data, "fetching unassigned classes")

    def assign_tutor(self, class_id: str, tutor_id: str) -> str:
        data = self.backend.put(
            f"/admin/classes/{class_id}/assign-tutor",
            "assigning tutor",
            json={"tutorId": tutor_id},
        )
        if isinstance(data, dict) and data.get("message"):
            return str(data["message"])
        return "Tutor assigned successfully"


class StaffRepository:
    def __init__(self, backend: BackendClient):
        self.backend = backend

    def get_by_id(self, staff_id: str) -> Optional[StaffRecord]:
        try:
            data = self.backend.get(f"/admin/staff/{staff_id}", "fetching staff member")
        except BackendError as exc:
            if exc.status_code == 404:
                return None
            raise
        return parse_record(StaffRecord, data, "fetching staff member")

    def list_active(self) -> List[StaffRecord]:
        data = self.backend.get("/admin/staff", "fetching staff")
        staff = parse_records(StaffRecord, data, "fetching staff")
        return [s for s in staff if s.active]
