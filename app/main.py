from fastapi.middleware.cors import CORSMiddleware
from app.core.config import settings
from app.core.database import engine, Base
from app.core.errors import register_exception_handlers
from app.middleware.security_logging import RotatingFileSecuritySink, SecurityLoggingMiddleware
from app.routers import (
    auth, categories, lead_statuses, leads, notifications, properties,
    reference_sources, reports, statuses, users, viewings,
)
from app.routers import settings as settings_router
from fastapi import FastAPI
from app.core.logging_config import setup_logging
import logging

setup_logging()
logger = logging.getLogger(__name__)

# ==========================================
# 1. SETUP APPLICATION
# ==========================================
app = FastAPI(
    title="Real Estate CRM API",
    description="Leads, properties, referrals, viewings and reporting for a real-estate agency",
    version="2.0.0"
)

# Replaced by tests with an in-memory sink
app.state.security_sink = RotatingFileSecuritySink()

# ==========================================
# 2. MIDDLEWARE & ERROR ENVELOPE
# ==========================================
app.add_middleware(SecurityLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_exception_handlers(app)


@app.on_event("startup")
async def startup_event():
    """Create tables, open the security log"""
    logger.info("=" * 50)
    logger.info("🚀 Real Estate CRM API Starting Up")
    logger.info("=" * 50)
    logger.info("Initializing database tables...")
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables initialized successfully")
    app.state.security_sink.open()
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Database: {settings.database_url[:50]}...")
    logger.info(f"JWT Expiration: {settings.access_token_expire_minutes} minutes")
    logger.info("=" * 50)


@app.on_event("shutdown")
async def shutdown_event():
    """Close the security log"""
    app.state.security_sink.close()
    logger.info("=" * 50)
    logger.info("🛑 Real Estate CRM API Shutting Down")
    logger.info("=" * 50)

# ==========================================
# 3. REGISTER ROUTERS
# ==========================================
# A. Authentication & staff
app.include_router(auth.router, prefix="/api/auth", tags=["Authentication"])
app.include_router(users.router, prefix="/api/users", tags=["Users & Teams"])

# B. Setup tables
app.include_router(lead_statuses.router, prefix="/api/lead-statuses", tags=["Lead Statuses"])
app.include_router(statuses.router, prefix="/api/statuses", tags=["Property Statuses"])
app.include_router(categories.router, prefix="/api/categories", tags=["Categories"])
app.include_router(reference_sources.router, prefix="/api/reference-sources", tags=["Reference Sources"])
app.include_router(settings_router.router, prefix="/api/settings", tags=["Settings"])

# C. Records, imports & referrals
app.include_router(leads.router, prefix="/api/leads", tags=["Leads"])
app.include_router(properties.router, prefix="/api/properties", tags=["Properties"])
app.include_router(viewings.router, prefix="/api/viewings", tags=["Viewings"])

# D. Notifications & reporting
app.include_router(notifications.router, prefix="/api/notifications", tags=["Notifications"])
app.include_router(reports.router, prefix="/api/reports", tags=["Reports"])

# ==========================================
# 4. HEALTH CHECK
# ==========================================
@app.get("/", tags=["Health"])
def read_root():
    return {
        "status": "active",
        "message": "Real Estate CRM API is running successfully."
    }
