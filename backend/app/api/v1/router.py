from fastapi import APIRouter

from app.api.v1 import audit, workflows
from app.api.v1 import approval_matrix as am_module

api_router = APIRouter()

api_router.include_router(am_module.router, prefix="/approval-matrix", tags=["approval-matrix"])
api_router.include_router(am_module.delegation_router, prefix="/users", tags=["approval-matrix"])
api_router.include_router(workflows.router, prefix="/workflows", tags=["workflows"])
api_router.include_router(audit.router, prefix="/audit", tags=["audit"])
