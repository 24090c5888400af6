"""
HTTP Binding
============
FastAPI router exposing a TokenAffirm instance's operations.

Usage:
    async def current_user(request: Request) -> Optional[str]:
        return request.state.user_id

    app.include_router(create_affirm_router(affirm, current_user))

Endpoints are ``POST /{profile}/{identifier}/{operation}``, so several
engine instances can share one application.
"""

from typing import Awaitable, Callable, Optional, Union

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
import structlog

from .config import (
    REQUEST_TOKEN,
    VERIFY_TOKEN,
    INVALIDATE_SESSION,
    ASSERT_OPEN_SESSION,
    VERIFY_CONTACT,
)
from .engine import TokenAffirm
from .errors import (
    DeliveryFailed,
    DeliveryTimeout,
    RateLimited,
    SessionConflict,
    TokenAffirmError,
    Unauthenticated,
    UnknownContact,
    UnsupportedFactor,
)

logger = structlog.get_logger(__name__)

IdentityDependency = Callable[..., Union[Optional[str], Awaitable[Optional[str]]]]

_STATUS_CODES = {
    Unauthenticated: 401,
    UnknownContact: 422,
    UnsupportedFactor: 422,
    SessionConflict: 409,
    RateLimited: 429,
    DeliveryFailed: 502,
    DeliveryTimeout: 504,
}


class ScopeRequest(BaseModel):
    scope_key: str


class VerifyRequest(BaseModel):
    scope_key: str
    token: str


class SessionResponse(BaseModel):
    session_id: str


class VerifiedResponse(BaseModel):
    verified: bool


class RemovedResponse(BaseModel):
    removed: int


class OpenResponse(BaseModel):
    open: bool


class ContactResponse(BaseModel):
    contact: str
    factor: str


def to_http_error(error: TokenAffirmError) -> HTTPException:
    """Map an engine error to an HTTPException."""
    status_code = 500
    for error_type, code in _STATUS_CODES.items():
        if isinstance(error, error_type):
            status_code = code
            break

    headers = None
    if isinstance(error, RateLimited) and error.retry_after:
        headers = {"Retry-After": str(error.retry_after)}

    if status_code == 500:
        logger.error("Unmapped TokenAffirm error", code=error.code, error=str(error))

    return HTTPException(
        status_code=status_code,
        detail={"code": error.code, "message": str(error)},
        headers=headers,
    )


def create_affirm_router(affirm: TokenAffirm, get_identity: IdentityDependency) -> APIRouter:
    """
    Create a router for one engine instance.

    Args:
        affirm: The engine to expose
        get_identity: FastAPI dependency returning the authenticated
            caller identity, or None

    Returns:
        APIRouter with one POST endpoint per operation
    """
    router = APIRouter(
        prefix=f"/{affirm.config.profile}/{affirm.identifier}",
        tags=["tokenaffirm"],
    )

    @router.post(f"/{REQUEST_TOKEN}", response_model=SessionResponse)
    async def request_token(body: ScopeRequest, identity=Depends(get_identity)):
        try:
            session_id = await affirm.request_token(identity, body.scope_key)
        except TokenAffirmError as e:
            raise to_http_error(e) from e
        return SessionResponse(session_id=session_id)

    @router.post(f"/{VERIFY_TOKEN}", response_model=VerifiedResponse)
    async def verify_token(body: VerifyRequest, identity=Depends(get_identity)):
        try:
            verified = await affirm.verify_token(identity, body.scope_key, body.token)
        except TokenAffirmError as e:
            raise to_http_error(e) from e
        return VerifiedResponse(verified=verified)

    @router.post(f"/{INVALIDATE_SESSION}", response_model=RemovedResponse)
    async def invalidate_session(body: ScopeRequest, identity=Depends(get_identity)):
        try:
            removed = await affirm.invalidate_session(identity, body.scope_key)
        except TokenAffirmError as e:
            raise to_http_error(e) from e
        return RemovedResponse(removed=removed)

    @router.post(f"/{ASSERT_OPEN_SESSION}", response_model=OpenResponse)
    async def assert_open_session(body: ScopeRequest, identity=Depends(get_identity)):
        try:
            is_open = await affirm.assert_open_session(identity, body.scope_key)
        except TokenAffirmError as e:
            raise to_http_error(e) from e
        return OpenResponse(open=is_open)

    @router.post(f"/{VERIFY_CONTACT}", response_model=ContactResponse)
    async def verify_contact(identity=Depends(get_identity)):
        try:
            profile = await affirm.verify_contact(identity)
        except TokenAffirmError as e:
            raise to_http_error(e) from e
        return ContactResponse(**profile.to_dict())

    return router
