"""
CareNote Backend — Clinic Membership Route Handlers
=====================================================

What:  Tenant administration: list members, invite (with automatic
       subscription upgrade), resend, remove, activate/deactivate.
Who:   The clinic owner; members holding `can_invite` may list, invite
       and resend.
"""

import uuid

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from carenote.database import get_db_session
from carenote.dependencies import require_owner, require_tenant_admin
from carenote.models.user import User
from carenote.schemas.clinic import (
    InviteMemberRequest,
    InviteMemberResponse,
    MemberListResponse,
    MemberRemovalResponse,
    MemberResponse,
    MemberStatusRequest,
)
from carenote.schemas.common import ErrorResponse
from carenote.services.invitation_service import invitation_service
from carenote.services.subscription_service import subscription_service
from carenote.services.tenancy_service import tenancy_service

router = APIRouter(prefix="/api/clinic", tags=["Clinic"])


@router.get("/members", response_model=MemberListResponse, responses={403: {"model": ErrorResponse}})
async def list_members(
    user: User = Depends(require_tenant_admin),
    db: AsyncSession = Depends(get_db_session),
) -> MemberListResponse:
    owner = await tenancy_service.get_billing_owner(db, user)
    members = await tenancy_service.list_members(db, owner.id)
    subscription = await subscription_service.get_for_owner(db, owner)
    member_count = len(members) + 1
    return MemberListResponse(
        tenant_name=invitation_service.tenant_name_of(owner),
        members=[MemberResponse.model_validate(m) for m in members],
        member_count=member_count,
        num_licenses=subscription.num_licenses,
        available_seats=max(0, subscription.num_licenses - member_count),
    )


@router.post(
    "/invitations",
    response_model=InviteMemberResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        403: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        502: {"model": ErrorResponse, "description": "Invitation email could not be sent"},
    },
    summary="Invite a member (upgrades the subscription when capacity is exceeded)",
)
async def invite_member(
    body: InviteMemberRequest,
    user: User = Depends(require_tenant_admin),
    db: AsyncSession = Depends(get_db_session),
) -> InviteMemberResponse:
    result = await invitation_service.invite_member(
        db,
        inviter=user,
        email=body.email,
        name=body.name,
        phone=body.phone,
        specialty=body.specialty,
    )
    message = "Invitation sent"
    if result.subscription_upgraded:
        message = "Invitation sent. Your subscription was upgraded to cover the new member."
    return InviteMemberResponse(
        message=message,
        member=MemberResponse.model_validate(result.member),
        member_count=result.member_count,
        subscription_upgraded=result.subscription_upgraded,
        upgrade=result.plan_change.as_dict() if result.plan_change else None,
    )


@router.post(
    "/members/{member_id}/resend-invitation",
    response_model=MemberResponse,
    responses={404: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def resend_invitation(
    member_id: uuid.UUID,
    user: User = Depends(require_tenant_admin),
    db: AsyncSession = Depends(get_db_session),
) -> MemberResponse:
    member = await invitation_service.resend_invitation(db, user, member_id)
    return MemberResponse.model_validate(member)


@router.delete(
    "/members/{member_id}",
    response_model=MemberRemovalResponse,
    responses={404: {"model": ErrorResponse}},
)
async def remove_member(
    member_id: uuid.UUID,
    owner: User = Depends(require_owner),
    db: AsyncSession = Depends(get_db_session),
) -> MemberRemovalResponse:
    outcome = await invitation_service.remove_member(db, owner, member_id)
    message = "Invitation withdrawn" if outcome == "deleted" else "Member removed from the clinic"
    return MemberRemovalResponse(message=message, outcome=outcome)


@router.patch(
    "/members/{member_id}/status",
    response_model=MemberResponse,
    responses={404: {"model": ErrorResponse}, 400: {"model": ErrorResponse}},
)
async def set_member_status(
    member_id: uuid.UUID,
    body: MemberStatusRequest,
    owner: User = Depends(require_owner),
    db: AsyncSession = Depends(get_db_session),
) -> MemberResponse:
    member = await invitation_service.set_member_active(db, owner, member_id, body.is_active)
    return MemberResponse.model_validate(member)
