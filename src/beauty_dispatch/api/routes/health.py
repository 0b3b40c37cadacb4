"""Health endpoints."""

from __future__ import annotations

from fastapi import APIRouter, status

from ...config import settings

router = APIRouter(tags=["health"])


@router.get("/health", status_code=status.HTTP_200_OK)
def health_root() -> dict:
    """Simple health check endpoint that doesn't require any dependencies."""
    return {"status": "ok"}


def _get_maps_health_check():
    """Lazy import to avoid startup failures."""
    if settings.distance_provider == "osrm":
        from ...services.maps.osrm_client import check_health
    else:
        from ...services.maps.google_client import check_health
    return check_health


@router.get("/health/maps", status_code=status.HTTP_200_OK)
async def health_maps() -> dict:
    """Check the configured distance provider answers requests."""
    try:
        check_health = _get_maps_health_check()
        healthy = await check_health()
        return {"service": settings.distance_provider, "healthy": healthy}
    except Exception as e:
        return {"service": settings.distance_provider, "healthy": False, "error": str(e)}


@router.get("/health/database", status_code=status.HTTP_200_OK)
async def check_database() -> dict:
    """Check database connection and store catalog status."""
    from ...db.supabase import get_supabase_client

    supabase = await get_supabase_client()
    if not supabase:
        return {
            "configured": False,
            "message": "Supabase not configured. Set BD_SUPABASE_URL and BD_SUPABASE_KEY environment variables.",
            "stores_count": 0,
        }

    try:
        response = await supabase.table("stores").select("id", count="exact").limit(1).execute()
        count = response.count if response.count is not None else len(response.data or [])
        return {
            "configured": True,
            "connected": True,
            "stores_count": count,
            "message": f"Database connected. Found {count} stores.",
        }
    except Exception as exc:
        return {
            "configured": True,
            "connected": False,
            "error": str(exc),
            "message": f"Database connection error: {exc}",
        }
