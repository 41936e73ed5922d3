"""
Administrative reporting and moderation. Every route requires an admin.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query

from kepka.db import DbClient, UserRecord, utcnow
from kepka.dependencies import (
    RequestContext,
    Services,
    get_db_client,
    get_request_context,
    get_services,
    require_admin,
)
from kepka.errors import NotFound, ValidationFailed
from kepka.routes.common import audit
from kepka.schemas import (
    Pagination,
    ResolveReportRequest,
    SettingUpdateRequest,
    SuspendUserRequest,
)
from kepka.types import ReportStatus, SettingType

logger = logging.getLogger(__name__)

router = APIRouter()


def _matches_type(value: Any, setting_type: SettingType) -> bool:
    if setting_type is SettingType.NUMBER:
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if setting_type is SettingType.BOOLEAN:
        return isinstance(value, bool)
    if setting_type is SettingType.STRING:
        return isinstance(value, str)
    if setting_type is SettingType.ARRAY:
        return isinstance(value, list)
    return isinstance(value, dict)


@router.get("/stats")
def platform_stats(
    admin: UserRecord = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    return {"stats": db.platform_stats(since=utcnow() - timedelta(hours=24))}


@router.get("/users")
def list_users(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    search: Optional[str] = Query(None, min_length=1),
    admin: UserRecord = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    users, total = db.list_users(search=search, limit=limit, offset=offset)
    return {
        "users": [u.as_dict() for u in users],
        "pagination": Pagination.of(total, limit, offset).model_dump(),
    }


@router.post("/users/{user_id}/suspend")
def suspend_user(
    user_id: str,
    payload: SuspendUserRequest,
    admin: UserRecord = Depends(require_admin),
    services: Services = Depends(get_services),
    ctx: RequestContext = Depends(get_request_context),
):
    if user_id == admin.id:
        raise ValidationFailed("Admins cannot suspend their own account")
    target = services.db.update_user(
        user_id,
        is_suspended=True,
        suspension_reason=payload.reason,
        suspended_at=utcnow(),
        suspended_by=admin.id,
    )
    if target is None:
        raise NotFound("User not found")
    logger.info("User %s suspended by %s: %s", target.email, admin.email, payload.reason)
    audit(services.db, admin, ctx, "suspend", "user", user_id, {"reason": payload.reason})
    services.notifier.notify(
        "security_alert",
        {"alert_message": f"your account was suspended ({payload.reason})"},
        target.email,
    )
    return {"message": "User suspended successfully", "user": target.as_dict()}


@router.post("/users/{user_id}/unsuspend")
def unsuspend_user(
    user_id: str,
    admin: UserRecord = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
    ctx: RequestContext = Depends(get_request_context),
):
    target = db.update_user(
        user_id,
        is_suspended=False,
        suspension_reason=None,
        suspended_at=None,
        suspended_by=None,
    )
    if target is None:
        raise NotFound("User not found")
    logger.info("User %s unsuspended by %s", target.email, admin.email)
    audit(db, admin, ctx, "unsuspend", "user", user_id)
    return {"message": "User unsuspended successfully", "user": target.as_dict()}


@router.get("/tokens")
def list_all_tokens(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    search: Optional[str] = Query(None, min_length=1),
    admin: UserRecord = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    tokens, total = db.list_tokens(search=search, limit=limit, offset=offset)
    return {
        "tokens": [t.as_dict() for t in tokens],
        "pagination": Pagination.of(total, limit, offset).model_dump(),
    }


@router.get("/reports")
def list_reports(
    status: Optional[ReportStatus] = Query(None),
    admin: UserRecord = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    return {"reports": [r.as_dict() for r in db.list_token_reports(status=status)]}


@router.post("/reports/{report_id}/resolve")
def resolve_report(
    report_id: str,
    payload: ResolveReportRequest,
    admin: UserRecord = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
    ctx: RequestContext = Depends(get_request_context),
):
    report = db.resolve_token_report(
        report_id,
        status=ReportStatus(payload.status),
        admin_notes=payload.admin_notes,
        resolved_by=admin.id,
    )
    if report is None:
        raise NotFound("Report not found")
    logger.info("Report %s %s by %s", report_id, payload.status, admin.email)
    audit(db, admin, ctx, "resolve", "token_report", report_id, {"status": payload.status})
    return {"message": "Report resolved successfully", "report": report.as_dict()}


@router.get("/settings")
def list_settings(
    admin: UserRecord = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    return {"settings": [s.as_dict() for s in db.list_settings()]}


@router.put("/settings/{key}")
def update_setting(
    key: str,
    payload: SettingUpdateRequest,
    admin: UserRecord = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
    ctx: RequestContext = Depends(get_request_context),
):
    current = next((s for s in db.list_settings() if s.setting_key == key), None)
    if current is None:
        raise NotFound("Setting not found")
    if not _matches_type(payload.setting_value, current.setting_type):
        raise ValidationFailed(
            f"Setting {key} expects a value of type {current.setting_type.value}"
        )
    setting = db.update_setting(key, payload.setting_value, updated_by=admin.id)
    logger.info("Setting %s updated by %s", key, admin.email)
    audit(db, admin, ctx, "update", "platform_setting", key)
    return {"message": "Setting updated successfully", "setting": setting.as_dict()}
