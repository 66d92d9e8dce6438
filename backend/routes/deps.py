from fastapi import Depends, Request, HTTPException
from models.common import get_session
from models.profile import Profile
from services.errors import ConnectionRuleError
from sqlmodel import Session


def get_current_user_id(request: Request) -> str | None:
    return request.session.get("user_id")


def get_current_user(
    request: Request, session: Session = Depends(get_session)
) -> Profile | None:
    user_id = get_current_user_id(request)
    if not user_id:
        return None
    return session.get(Profile, user_id)


def current_user(user: Profile = Depends(get_current_user)) -> Profile:
    if user is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


def rule_error_response(error: ConnectionRuleError) -> HTTPException:
    return HTTPException(
        status_code=error.status_code,
        detail={"code": error.kind.value, "message": error.message},
    )
