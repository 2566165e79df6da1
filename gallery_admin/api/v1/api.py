from fastapi import APIRouter

from gallery_admin.api.v1.endpoints import audit, feature_flags

api_router = APIRouter()
api_router.include_router(feature_flags.router, prefix="/feature-flags", tags=["feature-flags"])
api_router.include_router(audit.router, prefix="/audit", tags=["audit"])
