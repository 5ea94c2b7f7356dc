"""Global settings API routes for ReleasePilot. Release managers only."""

from __future__ import annotations

import logging

from fastapi import APIRouter

from releasepilot.api.dependencies import CurrentUser, DatabaseDep, require_role
from releasepilot.api.schemas import SettingRead, SettingUpdate
from releasepilot.storage import GlobalSettingRepository, UserRole

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/settings")


@router.get("", response_model=list[SettingRead])
async def list_settings(user: CurrentUser, db: DatabaseDep) -> list[SettingRead]:
    """List all global settings ordered by key."""
    require_role(user, UserRole.RELEASE_MANAGER)

    with db.session_scope() as session:
        settings = GlobalSettingRepository(session).get_all()
        return [SettingRead.model_validate(setting) for setting in settings]


@router.post("", response_model=SettingRead)
async def upsert_setting(body: SettingUpdate, user: CurrentUser, db: DatabaseDep) -> SettingRead:
    """Create or update a global setting."""
    require_role(user, UserRole.RELEASE_MANAGER)

    with db.session_scope() as session:
        setting = GlobalSettingRepository(session).upsert(
            body.key,
            body.value,
            description=body.description,
            updated_by=user.id,
        )
        result = SettingRead.model_validate(setting)

    logger.info(f"Setting '{body.key}' updated by {user.id}")
    return result
