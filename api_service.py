"""
HTTP API for triggering contact enrichment
Exposes the resumable bulk job and single-contact enrichment to the CRM front-end
"""
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import uvicorn
from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from bulk_enricher import (
    BulkEnrichmentService,
    ContactAccessError,
    ContactNotFoundError,
    close_bulk_enrichment_service,
    get_bulk_enrichment_service,
)
from database import DatabaseConfigurationError, get_db_client
from models import (
    BulkEnrichRequest,
    BulkEnrichResponse,
    ContactEnrichResponse,
    EnrichmentOutcome,
    ProviderName,
    ProviderUsageResponse,
)
from provider_base import ProviderNotConfiguredError
from selector import CandidateFetchError

__version__ = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI lifespan manager"""
    logger.info("Starting Contact Enrichment API Service")
    yield
    await close_bulk_enrichment_service()
    logger.info("Shutting down Contact Enrichment API Service")


app = FastAPI(
    title="Contact Enrichment API",
    description="Fills missing contact emails and phones from Hunter, Apollo, Lusha and Findymail",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc: HTTPException):
    """Render errors as {"error": message}"""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content=exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request, exc: RequestValidationError):
    messages = "; ".join(error.get("msg", "invalid value") for error in exc.errors())
    return JSONResponse(status_code=422, content={"error": messages})


async def get_current_user_id(authorization: Optional[str] = Header(None)) -> str:
    """Resolve the bearer credential to the calling user's id"""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Unauthorized")

    token = authorization[len("Bearer "):].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Unauthorized")

    db_client = await get_db_client()
    try:
        user_id = await db_client.get_user_id(token)
    except DatabaseConfigurationError as e:
        logger.error(f"Cannot validate tokens: {e}")
        raise HTTPException(status_code=500, detail="Authentication backend not configured")
    except Exception as e:
        logger.error(f"Failed to validate token: {e}")
        raise HTTPException(status_code=401, detail="Invalid token")

    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")
    return user_id


@app.get("/ping")
async def ping():
    """Simple ping endpoint to check service availability"""
    return {
        "ping": "pong",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "contact-enrichment-api"
    }


@app.get("/health")
async def health_check(service: BulkEnrichmentService = Depends(get_bulk_enrichment_service)):
    """Basic health check endpoint, listing the providers that have keys"""
    return {
        "status": "healthy",
        "service": "contact-enrichment-api",
        "providers": sorted(provider.value for provider in service.providers),
    }


@app.get("/providers/usage", response_model=ProviderUsageResponse)
async def provider_usage(
    user_id: str = Depends(get_current_user_id),
    service: BulkEnrichmentService = Depends(get_bulk_enrichment_service),
):
    """Remaining credits per provider; unconfigured providers report not_configured"""
    return await service.provider_usage()


@app.post("/bulk-enrich", response_model=BulkEnrichResponse)
async def bulk_enrich(
    request: BulkEnrichRequest,
    user_id: str = Depends(get_current_user_id),
    service: BulkEnrichmentService = Depends(get_bulk_enrichment_service),
):
    """
    Enrich the next page of the caller's contacts

    Call again with the returned last_id until done is true.
    """
    try:
        return await service.run_batch(user_id, request.last_id, request.services)
    except CandidateFetchError as e:
        raise HTTPException(status_code=500, detail=f"Failed to fetch contacts: {e}")
    except Exception as e:
        logger.error(f"Bulk enrich error: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/contacts/{contact_id}/enrich/{provider}", response_model=ContactEnrichResponse)
async def enrich_contact(
    contact_id: str,
    provider: ProviderName,
    user_id: str = Depends(get_current_user_id),
    service: BulkEnrichmentService = Depends(get_bulk_enrichment_service),
):
    """Run a single provider against one of the caller's contacts"""
    try:
        result = await service.enrich_contact(user_id, contact_id, provider)
    except ProviderNotConfiguredError as e:
        raise HTTPException(status_code=500, detail={"error_code": "config_error", "error": str(e)})
    except ContactNotFoundError:
        raise HTTPException(status_code=404, detail="Contact not found")
    except ContactAccessError:
        raise HTTPException(status_code=403, detail="Not allowed to modify this contact")
    except Exception as e:
        logger.error(f"{provider.value} enrichment error for contact {contact_id}: {e}")
        raise HTTPException(status_code=500, detail={"error_code": "internal_error", "error": str(e)})

    if result.outcome == EnrichmentOutcome.SKIPPED:
        raise HTTPException(
            status_code=400,
            detail={"error_code": "missing_data", "error": f"Contact lacks the data {provider.value} needs"},
        )
    if result.outcome == EnrichmentOutcome.ERROR:
        raise HTTPException(
            status_code=502,
            detail={"status": "error", "error_code": result.error_code, "error": result.error},
        )

    return ContactEnrichResponse(status=result.outcome, updates=result.updates)


if __name__ == "__main__":
    from main import setup_production_logging
    setup_production_logging()

    port = int(os.getenv("PORT", 8000))
    host = os.getenv("HOST", "0.0.0.0")

    logger.info(f"Starting Contact Enrichment API Service on {host}:{port}")
    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="info",
        access_log=False
    )
