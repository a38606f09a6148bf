"""
CareNote Backend — Auth Route Handlers
========================================

What:  /api/auth endpoints: registration, login, token refresh, profile,
       password reset, email verification and invitation acceptance.
Who:   Called by the frontend login/signup flows and the invitation page.
"""

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from carenote.database import get_db_session
from carenote.dependencies import get_current_user
from carenote.models.user import User
from carenote.schemas.auth import (
    AcceptInvitationRequest,
    AcceptInvitationResponse,
    AccessTokenResponse,
    ChangePasswordRequest,
    EmailRequest,
    InvitationInfoResponse,
    LoginRequest,
    LoginResponse,
    MeResponse,
    ProfileUpdateRequest,
    RefreshRequest,
    RegisterRequest,
    RegisterResponse,
    ResetPasswordRequest,
    TokenRequest,
    UserResponse,
)
from carenote.schemas.common import ErrorResponse, MessageResponse
from carenote.services.auth_service import auth_service
from carenote.services.invitation_service import invitation_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Auth"])


@router.post(
    "/register",
    response_model=RegisterResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ErrorResponse}, 400: {"model": ErrorResponse}},
    summary="Register a clinic owner with a trial subscription",
)
async def register(body: RegisterRequest, db: AsyncSession = Depends(get_db_session)) -> RegisterResponse:
    registration = await auth_service.register(
        db,
        email=body.email,
        password=body.password,
        name=body.name,
        num_licenses=body.num_licenses,
        billing_interval=body.billing_interval,
        phone=body.phone,
        specialty=body.specialty,
        workplace=body.workplace,
        journal_system=body.journal_system,
        trial_end_date=body.trial_end_date,
    )
    return RegisterResponse(
        message="Registration successful. Please check your email to verify your account.",
        user=registration.user,
        subscription=registration.subscription,
    )


@router.post(
    "/login",
    response_model=LoginResponse,
    responses={401: {"model": ErrorResponse}},
    summary="Exchange email and password for a token pair",
)
async def login(body: LoginRequest, db: AsyncSession = Depends(get_db_session)) -> LoginResponse:
    result = await auth_service.login(db, body.email, body.password)
    return LoginResponse(**result)


@router.post("/refresh", response_model=AccessTokenResponse, responses={401: {"model": ErrorResponse}})
async def refresh(body: RefreshRequest, db: AsyncSession = Depends(get_db_session)) -> AccessTokenResponse:
    return AccessTokenResponse(**await auth_service.refresh(db, body.refresh_token))


@router.post("/logout", response_model=MessageResponse)
async def logout(user: User = Depends(get_current_user)) -> MessageResponse:
    # Tokens are stateless; the client discards them
    logger.info("User %s logged out", user.id)
    return MessageResponse(message="Logged out successfully")


@router.get("/me", response_model=MeResponse)
async def me(user: User = Depends(get_current_user)) -> MeResponse:
    return MeResponse(user=user, is_owner=user.is_owner, is_super_admin=user.is_super_admin)


@router.put("/profile", response_model=UserResponse)
async def update_profile(
    body: ProfileUpdateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> UserResponse:
    updated = await auth_service.update_profile(db, user, body.model_dump(exclude_unset=True))
    return UserResponse.model_validate(updated)


@router.put("/change-password", response_model=MessageResponse, responses={400: {"model": ErrorResponse}})
async def change_password(
    body: ChangePasswordRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> MessageResponse:
    await auth_service.change_password(db, user, body.current_password, body.new_password)
    return MessageResponse(message="Password changed successfully")


@router.post("/forgot-password", response_model=MessageResponse, responses={502: {"model": ErrorResponse}})
async def forgot_password(body: EmailRequest, db: AsyncSession = Depends(get_db_session)) -> MessageResponse:
    await auth_service.forgot_password(db, body.email)
    return MessageResponse(message="If an account exists for this email, a reset link has been sent.")


@router.post("/reset-password", response_model=MessageResponse, responses={400: {"model": ErrorResponse}})
async def reset_password(body: ResetPasswordRequest, db: AsyncSession = Depends(get_db_session)) -> MessageResponse:
    await auth_service.reset_password(db, body.token, body.password)
    return MessageResponse(message="Password has been reset. You can now log in.")


@router.post("/verify-email", response_model=UserResponse, responses={400: {"model": ErrorResponse}})
async def verify_email(body: TokenRequest, db: AsyncSession = Depends(get_db_session)) -> UserResponse:
    return UserResponse.model_validate(await auth_service.verify_email(db, body.token))


@router.post("/resend-verification", response_model=MessageResponse)
async def resend_verification(body: EmailRequest, db: AsyncSession = Depends(get_db_session)) -> MessageResponse:
    await auth_service.resend_verification(db, body.email)
    return MessageResponse(message="Verification email sent")


# ── Invitations ───────────────────────────────────────────────────────────


@router.get(
    "/invitation/{token}",
    response_model=InvitationInfoResponse,
    responses={404: {"model": ErrorResponse}, 400: {"model": ErrorResponse}},
)
async def verify_invitation(token: str, db: AsyncSession = Depends(get_db_session)) -> InvitationInfoResponse:
    return InvitationInfoResponse(**await invitation_service.verify_invitation(db, token))


@router.post(
    "/invitation/accept",
    response_model=AcceptInvitationResponse,
    responses={404: {"model": ErrorResponse}, 400: {"model": ErrorResponse}},
)
async def accept_invitation(
    body: AcceptInvitationRequest, db: AsyncSession = Depends(get_db_session)
) -> AcceptInvitationResponse:
    accepted = await invitation_service.accept_invitation(db, body.token, body.password)
    return AcceptInvitationResponse(user=accepted.user, tenant_name=accepted.tenant_name, **accepted.tokens)
