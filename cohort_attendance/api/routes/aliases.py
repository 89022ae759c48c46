# cohort_attendance/api/routes/aliases.py
from http import HTTPStatus

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

from cohort_attendance.api.dependencies.internal_auth import verify_internal_api_key
from cohort_attendance.core.exceptions import (
    AliasConflictError,
    AliasNotFoundError,
    UserNotFoundError,
)
from cohort_attendance.db.session import get_db
from cohort_attendance.schemas.alias import (
    AliasCreate,
    AliasCreateResult,
    AliasRead,
    UnmatchedEmail,
)
from cohort_attendance.services.alias_service import (
    add_email_alias,
    list_email_aliases,
    list_unmatched_emails,
    rematch_attendance_by_email,
    remove_email_alias,
)

router = APIRouter(
    prefix="/attendance/aliases",
    tags=["Email aliases"],
    dependencies=[Depends(verify_internal_api_key)],
)


@router.get(
    "",
    response_model=list[AliasRead],
    summary="List email aliases",
)
async def get_aliases(
    user_id: str | None = Query(
        default=None,
        description="Only aliases of this user. If omitted, returns all aliases.",
    ),
    db: AsyncSession = Depends(get_db),
) -> list[AliasRead]:
    aliases = await list_email_aliases(db, user_id=user_id)
    return [AliasRead.model_validate(a) for a in aliases]


@router.get(
    "/unmatched",
    response_model=list[UnmatchedEmail],
    summary="List attendance emails that did not match any user",
)
async def get_unmatched_emails(
    db: AsyncSession = Depends(get_db),
) -> list[UnmatchedEmail]:
    return await list_unmatched_emails(db)


@router.post(
    "",
    response_model=AliasCreateResult,
    status_code=HTTPStatus.CREATED,
    summary="Link an alternate email to a user",
    description=(
        "Registers `alias_email` as belonging to `user_id` and links any "
        "existing unmatched attendance rows with that email to the user. A row "
        "in a session where the user already has a record is merged into it."
    ),
    responses={
        404: {"description": "User does not exist."},
        409: {"description": "Email already linked to a user, or some user's primary email."},
    },
)
async def create_alias(
    payload: AliasCreate,
    db: AsyncSession = Depends(get_db),
) -> AliasCreateResult:
    try:
        alias = await add_email_alias(db, payload.user_id, payload.alias_email)
    except UserNotFoundError as exc:
        raise HTTPException(status_code=HTTPStatus.NOT_FOUND, detail=str(exc)) from exc
    except AliasConflictError as exc:
        raise HTTPException(status_code=HTTPStatus.CONFLICT, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=HTTPStatus.BAD_REQUEST, detail=str(exc)) from exc

    rematched = await rematch_attendance_by_email(db, alias.alias_email, payload.user_id)
    return AliasCreateResult(alias=AliasRead.model_validate(alias), rematched_records=rematched)


@router.delete(
    "/{alias_id}",
    status_code=HTTPStatus.NO_CONTENT,
    summary="Remove an email alias",
    responses={404: {"description": "Alias does not exist."}},
)
async def delete_alias(
    alias_id: str = Path(..., description="Alias identifier."),
    db: AsyncSession = Depends(get_db),
) -> None:
    try:
        await remove_email_alias(db, alias_id)
    except AliasNotFoundError as exc:
        raise HTTPException(status_code=HTTPStatus.NOT_FOUND, detail=str(exc)) from exc
