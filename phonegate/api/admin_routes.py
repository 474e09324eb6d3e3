from fastapi import APIRouter, Depends, HTTPException, Header

from phonegate.api.routes import get_registry
from phonegate.api.schemas import AdminSnapshot, MetricsSnapshot
from phonegate.core.registry import FlowRegistry
from phonegate.settings import settings
from phonegate.store.session_repo import load_snapshot, to_snapshot
import phonegate.observability.metrics as metrics

router = APIRouter(prefix="/admin", tags=["admin"])


def require_admin(x_admin_key: str = Header(default="", alias="x-admin-key")):
    if not settings.ADMIN_RBAC_ENABLED:
        return
    # Secure default: if enabled but no key configured, reject all.
    if not settings.ADMIN_API_KEY:
        raise HTTPException(status_code=403, detail="Admin access disabled (no key configured)")
    if x_admin_key != settings.ADMIN_API_KEY:
        raise HTTPException(status_code=403, detail="Invalid admin key")


@router.get("/verification/{user_id}", response_model=AdminSnapshot)
async def get_verification_snapshot(
    user_id: str,
    _=Depends(require_admin),
    reg: FlowRegistry = Depends(get_registry),
):
    """Live session (this process) and the last stored snapshot. Secrets are never included."""
    flow = reg.get(user_id)
    live = to_snapshot(flow.session) if flow is not None else None
    try:
        stored = await load_snapshot(user_id)
    except Exception as e:
        raise HTTPException(status_code=503, detail=f"Snapshot store unavailable: {type(e).__name__}")
    if live is None and stored is None:
        raise HTTPException(status_code=404, detail="No verification session")
    return AdminSnapshot(userId=user_id, live=live, stored=stored)


@router.get("/metrics", response_model=MetricsSnapshot)
async def get_metrics(_=Depends(require_admin)):
    """Provider outcomes, policy decisions and recent fail-open grants."""
    return await metrics.get_snapshot()
