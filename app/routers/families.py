"""Family router - progress across every goal a family owns."""
from fastapi import APIRouter, Depends

from app.exceptions import ProgressError
from app.models.progress import FamilyProgressSummary, ProgressSnapshot
from app.routers.auth import get_current_user_id
from app.routers.errors import to_http_exception
from app.routers.progress import get_progress_service
from app.services.progress_service import ProgressService


router = APIRouter(prefix="/families/{family_id}", tags=["families"])


@router.get("/progress", response_model=list[ProgressSnapshot])
async def get_family_progress(
    family_id: str,
    user_id: str = Depends(get_current_user_id),
    service: ProgressService = Depends(get_progress_service),
):
    """
    Progress snapshot of every goal in a family.

    - Requires authentication
    - Empty list for a family with no goals
    """
    try:
        return await service.get_family_progress(family_id)
    except ProgressError as e:
        raise to_http_exception(e)


@router.get("/progress-summary", response_model=FamilyProgressSummary)
async def get_family_summary(
    family_id: str,
    user_id: str = Depends(get_current_user_id),
    service: ProgressService = Depends(get_progress_service),
):
    """Goal counts, totals, upcoming milestones and recent achievements for a family."""
    try:
        return await service.get_family_summary(family_id)
    except ProgressError as e:
        raise to_http_exception(e)
