from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header

from tokencache.api.schemas import (
    Envelope,
    IssueTokensRequest,
    LogoutRequest,
    PrincipalResponse,
    TokenPairResponse,
    TokenRefreshRequest,
    TokenStatusResponse,
)
from tokencache.logging import get_logger
from tokencache.service.auth import AuthContext
from tokencache.service.runtime import get_runtime

logger = get_logger(__name__)

router = APIRouter(prefix="/v1")


async def get_principal(
    authorization: Optional[str] = Header(None),
    x_subject: Optional[str] = Header(None, convert_underscores=False, alias="X-Subject"),
) -> AuthContext:
    runtime = get_runtime()
    return await runtime.auth.authenticate(authorization, claimed_subject=x_subject)


async def get_admin_principal(
    authorization: Optional[str] = Header(None),
    x_subject: Optional[str] = Header(None, convert_underscores=False, alias="X-Subject"),
) -> AuthContext:
    runtime = get_runtime()
    return await runtime.auth.authenticate(
        authorization,
        claimed_subject=x_subject,
        required_role=runtime.settings.admin_role,
    )


@router.post("/auth/tokens", response_model=Envelope, status_code=201, tags=["auth"])
async def issue_tokens(
    body: IssueTokensRequest, principal: AuthContext = Depends(get_admin_principal)
):
    """Mint a token pair for a subject, e.g. when provisioning a device.

    Requires an admin principal. The caller is responsible for having
    verified the subject; no account lookup happens here.
    """
    runtime = get_runtime()
    tokens = await runtime.auth.login(body.subject, body.role)
    logger.info(
        "tokens_issued_by_admin",
        admin=principal.subject,
        subject=body.subject,
        role=body.role,
    )
    return Envelope(status="ok", data=TokenPairResponse(**tokens))


@router.post("/auth/refresh", response_model=Envelope, tags=["auth"])
async def refresh_tokens(body: TokenRefreshRequest):
    runtime = get_runtime()
    tokens = await runtime.auth.refresh_tokens(body.refresh_token)
    return Envelope(status="ok", data=TokenPairResponse(**tokens))


@router.post("/auth/logout", response_model=Envelope, tags=["auth"])
async def logout(body: LogoutRequest, authorization: Optional[str] = Header(None)):
    runtime = get_runtime()
    await runtime.auth.logout(authorization, body.refresh_token)
    return Envelope(status="ok", data={"revoked": True})


@router.get("/auth/status", response_model=Envelope, tags=["auth"])
async def token_status(
    authorization: Optional[str] = Header(None),
    x_subject: Optional[str] = Header(None, convert_underscores=False, alias="X-Subject"),
):
    """Report the cache state of the bearer access token without enforcing it."""
    runtime = get_runtime()
    identity, status = await runtime.auth.inspect(authorization, x_subject)
    return Envelope(
        status="ok",
        data=TokenStatusResponse(
            subject=identity.subject,
            claimed_subject=x_subject if x_subject is not None else identity.subject,
            access_id=identity.unique_id,
            **status.as_dict(),
        ),
    )


@router.get("/auth/me", response_model=Envelope, tags=["auth"])
async def whoami(principal: AuthContext = Depends(get_principal)):
    return Envelope(
        status="ok",
        data=PrincipalResponse(
            subject=principal.subject,
            role=principal.role,
            access_id=principal.access_id,
        ),
    )
