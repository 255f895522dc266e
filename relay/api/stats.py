"""
Connection statistics and operator endpoints
"""
from datetime import datetime

from fastapi import APIRouter, HTTPException, Request, Response

from relay.core.relay import RelayService
from relay.models.tenant import InvalidTenantId, PoolStats


router = APIRouter()


def get_relay(request: Request) -> RelayService:
    """Get relay service from app state"""
    return request.app.state.relay


@router.get("/health")
async def health(request: Request):
    """Health check with pool statistics"""
    return {
        "status": "ok",
        "timestamp": datetime.now().isoformat(),
        "stats": get_relay(request).stats().model_dump(by_alias=True),
    }


@router.get("/stats", response_model=PoolStats)
async def stats(request: Request):
    """Get connection statistics"""
    return get_relay(request).stats()


@router.delete("/connections/{tenant_id}", status_code=204)
async def disconnect_tenant(tenant_id: str, request: Request):
    """Release a streamer's upstream connection"""
    try:
        released = await get_relay(request).disconnect_tenant(tenant_id)
    except InvalidTenantId as e:
        raise HTTPException(status_code=400, detail=str(e))
    
    if not released:
        raise HTTPException(status_code=404, detail="Connection not found")
    return Response(status_code=204)
