"""
Service wiring for FastAPI routes.

Route tests override get_deal_context_provider (and get_db) through
app.dependency_overrides.
"""
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from dripline.config import settings
from dripline.database import get_db
from dripline.services.cancellation import CancellationController
from dripline.services.catalog_service import CatalogService
from dripline.services.channels import DealContextProvider
from dripline.services.collaborators import CrmDealContextProvider
from dripline.services.job_store import JobStore
from dripline.services.materializer import JobMaterializer


def get_deal_context_provider() -> DealContextProvider:
    return CrmDealContextProvider()


def get_job_store(db: AsyncSession = Depends(get_db)) -> JobStore:
    return JobStore(db, atomic_claims=settings.ATOMIC_CLAIMS)


def get_catalog_service(db: AsyncSession = Depends(get_db)) -> CatalogService:
    return CatalogService(db)


def get_cancellation_controller(
    db: AsyncSession = Depends(get_db),
    job_store: JobStore = Depends(get_job_store),
    deal_contexts: DealContextProvider = Depends(get_deal_context_provider),
) -> CancellationController:
    materializer = JobMaterializer(db, deal_contexts, job_store=job_store)
    return CancellationController(db, materializer, job_store=job_store)
