from fastapi import APIRouter, Depends
from sqlmodel import Session

from models.common import get_session
from models.profile import DisplayProfile, Profile
from routes.deps import current_user, rule_error_response
from services import connections
from services.errors import NotFound

router = APIRouter(prefix="/profiles")


@router.get("/{user_id}")
async def get_profile(
    user_id: str,
    session: Session = Depends(get_session),
    user: Profile = Depends(current_user),
) -> DisplayProfile:
    try:
        return connections.get_display_profile(session, user_id)
    except NotFound as e:
        raise rule_error_response(e) from e
