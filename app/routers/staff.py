"""Staff login and presence routes."""

from datetime import datetime
from typing import Annotated, Literal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from ..core.runtime import ChatRuntime, get_runtime
from ..escalation.directory import StaffMember
from ..security.auth import require_role
from ..security.tokens import TokenConfigurationError, create_access_token

router = APIRouter(prefix="/api/staff", tags=["staff"])

AgentDep = Annotated[StaffMember, Depends(require_role("agent"))]
RuntimeDep = Annotated[ChatRuntime, Depends(get_runtime)]


class LoginRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320)
    password: str = Field(min_length=1)


class StaffProfile(BaseModel):
    id: UUID
    email: str
    name: str
    role: str
    status: str


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime
    staff: StaffProfile


class StatusUpdate(BaseModel):
    status: Literal["available", "busy", "offline"]


def _profile(staff: StaffMember) -> StaffProfile:
    return StaffProfile(
        id=staff.id, email=staff.email, name=staff.name, role=staff.role, status=staff.status
    )


@router.post("/login", response_model=LoginResponse)
def login(payload: LoginRequest, runtime: RuntimeDep) -> LoginResponse:
    staff = runtime.staff_directory.authenticate(payload.email, payload.password)
    if staff is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password.",
        )
    try:
        token, expires_at = create_access_token(staff)
    except TokenConfigurationError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)
        ) from exc
    return LoginResponse(access_token=token, expires_at=expires_at, staff=_profile(staff))


@router.get("/me", response_model=StaffProfile)
def me(staff: AgentDep) -> StaffProfile:
    return _profile(staff)


@router.put("/me/status", response_model=StaffProfile)
def update_status(payload: StatusUpdate, runtime: RuntimeDep, staff: AgentDep) -> StaffProfile:
    return _profile(runtime.staff_directory.set_status(staff.id, payload.status))
