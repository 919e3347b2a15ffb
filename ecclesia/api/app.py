"""
Ecclesia — HTTP API.

FastAPI application exposing:
- Current identity and navigation (``/api/me``)
- Congregations (list, create, update)
- Organization configuration and sync from the headquarters
- Invitations (issue, list, cancel, validate, accept)
- User role assignment

The caller's principal arrives in the ``X-User-Id`` header, set by the
authentication layer in front of this service. ``X-Congregation-Id``
selects the congregation in view.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ecclesia.access.authorization import AccessRequirement
from ecclesia.access.schema import (
    Congregation,
    InvitationStatus,
    Permission,
    Principal,
    Role,
)
from ecclesia.access.screens import ACTIONS
from ecclesia.access.session import AccessSession
from ecclesia.bootstrap import Services, build_services, configure_logging
from ecclesia.config import settings
from ecclesia.errors import (
    ConflictError,
    EcclesiaError,
    IdentityInactiveError,
    InvitationExpiredError,
    NotFoundError,
    UpstreamUnavailableError,
)
from ecclesia.membership.invitations import NewIdentityMaterial

logger = logging.getLogger(__name__)


# ── Pydantic request models ────────────────────────────────────


class InvitationRequest(BaseModel):
    email: str
    display_name: str
    role: Role
    congregation_id: str


class AcceptRequest(BaseModel):
    token: str
    display_name: str | None = None
    phone: str | None = None


class RoleChangeRequest(BaseModel):
    role: Role
    congregation_id: str | None = None


class ApiState:
    """Mutable application state injected at startup."""

    def __init__(self) -> None:
        self.services: Services | None = None
        self.startup_time: datetime = datetime.now(timezone.utc)


state = ApiState()


# ── Application lifecycle ──────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the services unless they were injected beforehand."""
    if state.services is None:
        configure_logging(settings)
        state.services = build_services(settings)
        logger.info("Ecclesia API started with %s", type(state.services.directory).__name__)
    yield
    logger.info("Ecclesia API shut down")


app = FastAPI(
    title=settings.api_title,
    description="Roles, congregations, organization identity and invitations",
    version="0.1.0",
    lifespan=lifespan,
)


# ── Error mapping ──────────────────────────────────────────────


def _status_for(exc: EcclesiaError) -> int:
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, ConflictError):
        return 409
    if isinstance(exc, InvitationExpiredError):
        return 410
    if isinstance(exc, IdentityInactiveError):
        return 403
    if isinstance(exc, UpstreamUnavailableError):
        return 503
    return 400


@app.exception_handler(EcclesiaError)
async def ecclesia_error_handler(request: Request, exc: EcclesiaError):
    status_code = _status_for(exc)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status_code,
        content={"error": type(exc).__name__, "detail": str(exc)},
    )


# ── Dependencies ───────────────────────────────────────────────


def get_services() -> Services:
    if state.services is None:
        raise HTTPException(status_code=503, detail="Services not initialized")
    return state.services


def current_session(
    x_user_id: str | None = Header(default=None, alias="X-User-Id"),
    x_user_name: str = Header(default="", alias="X-User-Name"),
    x_user_email: str = Header(default="", alias="X-User-Email"),
    x_congregation_id: str | None = Header(default=None, alias="X-Congregation-Id"),
    services: Services = Depends(get_services),
) -> AccessSession:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")
    principal = Principal(id=x_user_id, display_name=x_user_name, email=x_user_email)
    return AccessSession.open(
        principal, services.resolver, services.hierarchy, x_congregation_id
    )


def _require(
    session: AccessSession,
    requirement: AccessRequirement,
    unit_id: str | None = None,
) -> None:
    result = session.can(requirement, unit_id)
    if not result:
        logger.info(
            "Denied: user=%s clause=%s reason=%s",
            session.identity.id, result.clause.value, result.reason,
        )
        raise HTTPException(status_code=403, detail=result.reason)


_VIEW_CONGREGATIONS = AccessRequirement.of([Permission.CONGREGATIONS_VIEW])
_VIEW_USERS = AccessRequirement.of([Permission.USERS_VIEW])


# ── Routes: Identity ───────────────────────────────────────────


@app.get("/api/me")
async def api_me(session: AccessSession = Depends(current_session)):
    """The resolved identity, the congregation in view and the navigation."""
    return JSONResponse({
        "identity": session.identity.model_dump(mode="json"),
        "congregation": (
            session.selected.model_dump(mode="json") if session.selected else None
        ),
        "screens": [screen.key for screen in session.navigation()],
    })


# ── Routes: Congregations ──────────────────────────────────────


@app.get("/api/congregations")
async def api_congregations(session: AccessSession = Depends(current_session)):
    """All congregations for those who may view them, else only the caller's own."""
    units = session.hierarchy.list_units()
    if not session.can(_VIEW_CONGREGATIONS):
        units = [u for u in units if u.id == session.identity.congregation_id]
    return JSONResponse({"congregations": [u.model_dump(mode="json") for u in units]})


@app.post("/api/congregations", status_code=201)
async def api_create_congregation(
    unit: Congregation,
    session: AccessSession = Depends(current_session),
):
    _require(session, ACTIONS["congregations.add"])
    stored = session.hierarchy.create_unit(unit)
    return JSONResponse(status_code=201, content=stored.model_dump(mode="json"))


@app.put("/api/congregations/{unit_id}")
async def api_update_congregation(
    unit_id: str,
    changes: dict[str, Any],
    session: AccessSession = Depends(current_session),
):
    _require(session, ACTIONS["congregations.edit"], unit_id)
    updated = session.hierarchy.update_unit(unit_id, changes)
    return JSONResponse(updated.model_dump(mode="json"))


# ── Routes: Configuration ──────────────────────────────────────


@app.get("/api/configuration")
async def api_configuration(services: Services = Depends(get_services)):
    """Public-facing identity of the organization."""
    return JSONResponse(services.sync.load_configuration().model_dump(mode="json"))


@app.put("/api/configuration")
async def api_save_configuration(
    patch: dict[str, Any],
    session: AccessSession = Depends(current_session),
    services: Services = Depends(get_services),
):
    """Save the configuration and push its identity fields to the headquarters."""
    _require(session, ACTIONS["settings.edit"])
    saved = services.sync.save_configuration(patch)
    return JSONResponse(saved.model_dump(mode="json"))


@app.post("/api/configuration/sync")
async def api_sync_configuration(
    session: AccessSession = Depends(current_session),
    services: Services = Depends(get_services),
):
    """Refresh the configuration from the headquarters congregation."""
    _require(session, ACTIONS["settings.edit"])
    pulled = services.sync.pull()
    return JSONResponse(pulled.model_dump(mode="json"))


# ── Routes: Invitations ────────────────────────────────────────


@app.get("/api/invitations")
async def api_invitations(
    status: InvitationStatus | None = None,
    session: AccessSession = Depends(current_session),
    services: Services = Depends(get_services),
):
    _require(session, _VIEW_USERS)
    invitations = services.invitations.list_invitations(status)
    return JSONResponse({
        "invitations": [
            inv.model_dump(mode="json", exclude={"token"}) for inv in invitations
        ],
    })


@app.post("/api/invitations", status_code=201)
async def api_issue_invitation(
    req: InvitationRequest,
    session: AccessSession = Depends(current_session),
    services: Services = Depends(get_services),
):
    _require(session, ACTIONS["users.invite"])
    invitation = services.invitations.issue(
        email=req.email,
        display_name=req.display_name,
        role=req.role,
        congregation_id=req.congregation_id,
        issuer=session.identity,
    )
    return JSONResponse(status_code=201, content=invitation.model_dump(mode="json"))


@app.delete("/api/invitations/{invitation_id}")
async def api_cancel_invitation(
    invitation_id: str,
    session: AccessSession = Depends(current_session),
    services: Services = Depends(get_services),
):
    _require(session, ACTIONS["users.invite"])
    cancelled = services.invitations.cancel(invitation_id)
    return JSONResponse({"id": cancelled.id, "status": cancelled.status.value})


@app.get("/api/invitations/validate")
async def api_validate_invitation(token: str, services: Services = Depends(get_services)):
    """Unauthenticated: what the invitee sees before signing up."""
    check = services.invitations.validate(token)
    body: dict[str, Any] = {"outcome": check.outcome.value, "valid": check.is_valid}
    if check.invitation is not None:
        body["invitation"] = check.invitation.model_dump(
            mode="json",
            include={"email", "display_name", "role", "congregation_name", "expires_at"},
        )
    return JSONResponse(body)


@app.post("/api/invitations/accept")
async def api_accept_invitation(
    req: AcceptRequest,
    x_user_id: str | None = Header(default=None, alias="X-User-Id"),
    services: Services = Depends(get_services),
):
    """Redeem an invitation for the freshly authenticated principal."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")
    identity = services.invitations.redeem(
        req.token,
        NewIdentityMaterial(
            user_id=x_user_id, display_name=req.display_name, phone=req.phone
        ),
    )
    return JSONResponse(identity.model_dump(mode="json"))


# ── Routes: Users ──────────────────────────────────────────────


@app.get("/api/users")
async def api_users(
    session: AccessSession = Depends(current_session),
    services: Services = Depends(get_services),
):
    _require(session, _VIEW_USERS)
    return JSONResponse({
        "users": [u.model_dump(mode="json") for u in services.directory.list_users()],
    })


@app.patch("/api/users/{user_id}/role")
async def api_assign_role(
    user_id: str,
    req: RoleChangeRequest,
    session: AccessSession = Depends(current_session),
    services: Services = Depends(get_services),
):
    _require(session, ACTIONS["users.edit"])
    identity = services.resolver.assign_role(user_id, req.role, req.congregation_id)
    return JSONResponse(identity.model_dump(mode="json"))


# ── Health Check ───────────────────────────────────────────────


@app.get("/health")
async def health():
    """Health check endpoint."""
    return JSONResponse({
        "status": "healthy",
        "uptime_seconds": (datetime.now(timezone.utc) - state.startup_time).total_seconds(),
        "directory_available": state.services is not None,
    })
