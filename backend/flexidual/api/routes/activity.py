from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from flexidual.api.deps import get_db, require_roles
from flexidual.models.activity_log import ActivityLog
from flexidual.models.user import ADMIN_ROLES, User
from flexidual.schemas.activity import ActivityLogOut

router = APIRouter()


@router.get("/activity/logs", response_model=list[ActivityLogOut])
def list_activity_logs(
    entity_id: str | None = Query(default=None, alias="entityId"),
    limit: int = Query(default=200, ge=1, le=500),
    current_user: User = Depends(require_roles(*ADMIN_ROLES)),
    db: Session = Depends(get_db),
) -> list[ActivityLogOut]:
    query = select(ActivityLog)
    if entity_id:
        query = query.where(ActivityLog.entity_id == entity_id)
    query = query.order_by(ActivityLog.created_at.desc()).limit(limit)
    return list(db.execute(query).scalars())
