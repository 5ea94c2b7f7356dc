"""ReleasePilot storage layer.

This module provides database storage for release plans, steps, step
history, users and global settings using SQLAlchemy.
"""

from .database import Database, init_database
from .models import (
    SYSTEM_ACTOR,
    Base,
    GlobalSetting,
    PlanStatus,
    ReleasePlan,
    ReleaseStep,
    SchedulingType,
    StepCategory,
    StepHistory,
    StepStatus,
    User,
    UserRole,
)
from .repositories import (
    GlobalSettingRepository,
    ReleasePlanRepository,
    ReleaseStepRepository,
    StepHistoryRepository,
    UserRepository,
)
from .store import ReleaseStore

__all__ = [
    "SYSTEM_ACTOR",
    "Base",
    "Database",
    "GlobalSetting",
    "GlobalSettingRepository",
    "PlanStatus",
    "ReleasePlan",
    "ReleasePlanRepository",
    "ReleaseStep",
    "ReleaseStepRepository",
    "ReleaseStore",
    "SchedulingType",
    "StepCategory",
    "StepHistory",
    "StepHistoryRepository",
    "StepStatus",
    "User",
    "UserRepository",
    "UserRole",
    "init_database",
]
