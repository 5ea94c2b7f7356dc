"""User lookup API routes for ReleasePilot."""

from __future__ import annotations

from fastapi import APIRouter

from releasepilot.api.dependencies import DatabaseDep
from releasepilot.api.schemas import UserRead
from releasepilot.storage import UserRepository, UserRole

router = APIRouter(prefix="/users")


@router.get("", response_model=list[UserRead])
async def list_users(db: DatabaseDep, role: UserRole | None = None) -> list[UserRead]:
    """List assignable users.

    Without ``role``, returns team leads followed by POCs.
    """
    with db.session_scope() as session:
        repo = UserRepository(session)
        if role is not None:
            users = repo.get_by_role(role)
        else:
            users = repo.get_by_role(UserRole.TEAM_LEAD) + repo.get_by_role(UserRole.POC)
        return [UserRead.model_validate(user) for user in users]
