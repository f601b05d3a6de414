from __future__ import annotations

from fastapi import APIRouter, Depends

from cafe.core.metrics import request_metrics
from cafe.core.roles import Role
from cafe.deps import require_role
from cafe.models.user import User

router = APIRouter(prefix="/internal/metrics", tags=["internal-metrics"])


@router.get("")
def endpoint_metrics(_user: User = Depends(require_role([Role.ADMIN]))):
    return {"endpoints": request_metrics.snapshot()}
