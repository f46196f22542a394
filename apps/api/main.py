# FastAPI entrypoint for the delegate platform

import os

import dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from auth.security_middleware import AdminAccessLoggingMiddleware, SecurityHeadersMiddleware
from delegation.database import DatabaseManager
from delegation.routes import router as delegation_router
from documents.doc_routes import router as document_router

dotenv.load_dotenv()

app = FastAPI(
    title="Delegate Platform API",
    description="Country allocation and access-controlled records for MUN delegates",
    version="1.0.0"
)

# ==================== MIDDLEWARE ====================

app.add_middleware(AdminAccessLoggingMiddleware)
app.add_middleware(SecurityHeadersMiddleware)

FRONTEND_ORIGINS = [
    origin.strip()
    for origin in os.getenv("FRONTEND_ORIGINS", "http://localhost:5173,http://localhost:3000").split(",")
    if origin.strip()
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=FRONTEND_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept"],
    max_age=86400,
)

# ==================== ROUTERS ====================

app.include_router(delegation_router)   # /api
app.include_router(document_router)     # /documents


@app.get("/health")
def health_check():
    """Health check endpoint"""
    healthy = DatabaseManager.health_check()
    return {
        "status": "healthy" if healthy else "degraded",
        "database": "ok" if healthy else "unavailable",
        "backend": DatabaseManager.backend(),
    }


# ==================== STARTUP EVENTS ====================

@app.on_event("startup")
def startup_event():
    """Initialize the database and seed the country pool."""
    logger.info("Initializing delegation database...")
    DatabaseManager.initialize()
    logger.info("✓ Delegation database initialized")


@app.on_event("shutdown")
def shutdown_event():
    DatabaseManager.dispose()


def main():
    import uvicorn

    uvicorn.run(
        "apps.api.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
    )


if __name__ == "__main__":
    main()
