"""Pydantic models for gateway and portal data.

All data structures use Pydantic v2 for validation, serialization, and type safety.
Wire names (camelCase) are mapped through aliases; models can be built from
either the wire name or the field name.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Credentials(BaseModel):
    """Student account and password, immutable once supplied."""

    model_config = ConfigDict(frozen=True)

    account: str
    password: str = Field(repr=False)

    @field_validator("account", mode="before")
    @classmethod
    def _account_as_str(cls, value: Any) -> Any:
        # Student numbers are often passed as ints
        return str(value) if isinstance(value, int) else value


class ActivityStatus(str, Enum):
    """Portal ``activityStatus`` codes."""

    REGISTERING = "0"
    PENDING_START = "1"
    IN_PROGRESS = "2"
    PENDING_COMPLETION = "3"
    COMPLETED = "5"


class Organization(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str | None = None
    name: str | None = None


class UserInfo(BaseModel):
    """Logged-in student as returned by /api/getLoginUser."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str | None = None
    sex: str | None = None
    org: Organization = Organization()

    @field_validator("id", "sex", mode="before")
    @classmethod
    def _as_str(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "UserInfo":
        """Build from the portal's ``data`` object (org lives under loginEmpInfo)."""
        emp = data.get("loginEmpInfo") or {}
        org_id = emp.get("orgId")
        return cls(
            id=data["id"],
            name=data.get("name"),
            sex=data.get("sex"),
            org=Organization(
                id=str(org_id) if org_id is not None else None,
                name=emp.get("orgName"),
            ),
        )


class Activity(BaseModel):
    """Read-only snapshot of a portal activity."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str
    status: str = Field(default="", alias="activityStatus")
    name: str = Field(default="", alias="activityName")
    start_time: str | None = Field(default=None, alias="startTime")
    end_time: str | None = Field(default=None, alias="endTime")
    is_sign: int | None = Field(default=None, alias="isSign")

    @field_validator("id", "status", mode="before")
    @classmethod
    def _as_str(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value

    @field_validator("name", "status", mode="before")
    @classmethod
    def _not_null(cls, value: Any) -> Any:
        return "" if value is None else value


class SignRecord(BaseModel):
    """The caller's sign record for one activity."""

    model_config = ConfigDict(frozen=True)

    id: str
    is_sign: bool

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "SignRecord":
        """Signed only when both check-in and check-out times are present."""
        return cls(
            id=str(row["id"]),
            is_sign=row.get("signInTime") is not None
            and row.get("signOutTime") is not None,
        )


class SignUpResult(BaseModel):
    """Portal answer to a sign-up, e.g. ``{"msg": "报名成功", "code": "1"}``."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    message: str = Field(default="", alias="msg")
    code: str = ""

    @field_validator("message", "code", mode="before")
    @classmethod
    def _as_str(cls, value: Any) -> Any:
        if value is None:
            return ""
        return str(value) if isinstance(value, int) else value

    @property
    def succeeded(self) -> bool:
        return self.code == "1"


class Score(BaseModel):
    """Aggregate credit summary for a student."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    score: float = 0
    item: int = 0
    integrity_value: float = 0
    activity: int = 0
