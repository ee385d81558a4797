from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from assembler.config import settings
from assembler.middleware import add_error_handling_middleware
import logging

# Configure logging
logging.basicConfig(level=getattr(logging, settings.log_level.upper()))
logger = logging.getLogger(__name__)

# Create FastAPI app instance
app = FastAPI(
    title=settings.app_name,
    description="Server-side assembly of resumable chunked uploads",
    version=settings.app_version,
    debug=settings.debug
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add error handling middleware
add_error_handling_middleware(app)

# Include routers
from assembler.routes import health, info, uploads
from assembler.services.coordinator import init_upload_coordinator, shutdown_upload_coordinator

app.include_router(health.router, prefix=settings.api_v1_prefix)
app.include_router(info.router, prefix=settings.api_v1_prefix)
app.include_router(uploads.router, prefix=settings.api_v1_prefix)


# Coordinator lifecycle
@app.on_event("startup")
async def _startup():
    # Fails fast when libmagic or the storage roots are unusable
    init_upload_coordinator()


@app.on_event("shutdown")
async def _shutdown():
    shutdown_upload_coordinator()


@app.get("/")
async def root():
    """Root endpoint"""
    return {"message": settings.app_name, "version": settings.app_version}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.host, port=settings.port)
