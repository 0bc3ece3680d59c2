from fastapi import APIRouter
from haccp_audit.api.v1.endpoints import audit_forms, audit_templates, health

api_router = APIRouter()

# Deep health checks (use /health/ready for the load balancer)
api_router.include_router(health.router)

api_router.include_router(audit_templates.router)
api_router.include_router(audit_forms.router)
