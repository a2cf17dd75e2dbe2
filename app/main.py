from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

from .api.domain_mappings import router as domain_mappings_router
from .config import get_settings
from .domains.factory import build_service, close_service

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("domain_mapper")

# Initialize FastAPI app
app = FastAPI(
    title="Custom Domain Mapping Service",
    description="API for mapping tenant custom domains and managing their SSL certificates",
    version="0.1.0"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(domain_mappings_router)


# Startup event
@app.on_event("startup")
async def startup_event():
    app.state.settings = settings
    app.state.domain_service = build_service(settings)
    logger.info(f"Domain mapping service started (ingress target {settings.cname_target})")


@app.on_event("shutdown")
async def shutdown_event():
    service = getattr(app.state, "domain_service", None)
    if service:
        await close_service(service)
    logger.info("Domain mapping service stopped")


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.host, port=settings.port)
