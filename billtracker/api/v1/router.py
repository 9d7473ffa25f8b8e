from fastapi import APIRouter

from billtracker.api.v1.endpoints import accounts, alerts, bills, ingestion_jobs, service_numbers, stats

# Create API router
api_router = APIRouter()

# Include routers
api_router.include_router(bills.router, prefix="/bills", tags=["Bills"])
api_router.include_router(ingestion_jobs.router, prefix="/ingestion-jobs", tags=["Ingestion Jobs"])
api_router.include_router(accounts.router, prefix="/accounts", tags=["Accounts"])
api_router.include_router(alerts.router, prefix="/alerts", tags=["Alerts"])
api_router.include_router(service_numbers.router, prefix="/service-numbers", tags=["Service Numbers"])
api_router.include_router(stats.router, prefix="/stats", tags=["Stats"])

__all__ = ["api_router"]
