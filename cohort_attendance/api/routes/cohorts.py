# cohort_attendance/api/routes/cohorts.py
from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

from cohort_attendance.api.dependencies.internal_auth import verify_internal_api_key
from cohort_attendance.db.session import get_db
from cohort_attendance.schemas.student_attendance import CohortStudentAttendance
from cohort_attendance.services.student_attendance import build_cohort_student_attendance

router = APIRouter(
    prefix="/attendance/cohorts",
    tags=["Student attendance"],
    dependencies=[Depends(verify_internal_api_key)],
)


@router.get(
    "/{cohort_id}/students",
    response_model=CohortStudentAttendance,
    summary="Per-student attendance across a cohort's past sessions",
)
async def get_cohort_student_attendance(
    cohort_id: str = Path(..., description="Cohort identifier."),
    user_id: str | None = Query(None, description="Restrict the report to one student."),
    db: AsyncSession = Depends(get_db),
) -> CohortStudentAttendance:
    return await build_cohort_student_attendance(db, cohort_id, user_id=user_id)
