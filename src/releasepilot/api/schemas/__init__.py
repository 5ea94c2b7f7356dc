"""ReleasePilot API schemas."""

from releasepilot.schemas import (
    HistoryRead,
    PlanDetail,
    PlanRead,
    SettingRead,
    StepRead,
    UserRead,
)

from .common import ErrorResponse, MessageResponse
from .plans import PlanCreate, PlanUpdate
from .settings import SettingUpdate
from .steps import SCHEDULING_FIELDS, StepCreate, StepUpdate, TriggerRequest

__all__ = [
    "SCHEDULING_FIELDS",
    "ErrorResponse",
    "HistoryRead",
    "MessageResponse",
    "PlanCreate",
    "PlanDetail",
    "PlanRead",
    "PlanUpdate",
    "SettingRead",
    "SettingUpdate",
    "StepCreate",
    "StepRead",
    "StepUpdate",
    "TriggerRequest",
    "UserRead",
]
