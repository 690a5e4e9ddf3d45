import sys

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy import text
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db
from app.api.v1 import invoices, payments, subscriptions
from app.utils.errors import DomainError

# Logging
logger.remove()
logger.add(sys.stderr, level=settings.LOG_LEVEL)

# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    description="Subscription usage accounting and invoice lifecycle for laundry orders",
    version="1.0.0",
    debug=settings.DEBUG
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_headers=["*"],
    allow_origins=settings.allowed_origins_list,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]
)


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    logger.warning(f"{request.method} {request.url.path} -> {exc.code.value}: {exc.message}")
    return JSONResponse(status_code=exc.http_status, content=exc.to_response().model_dump())


# Health check
@app.get("/")
def read_root():
    return {
        "app": settings.APP_NAME,
        "version": "1.0.0",
        "status": "running"
    }

@app.get("/health")
def health_check():
    return {"status": "healthy"}

@app.get("/health/db")
def database_health(db: Session = Depends(get_db)):
    """Round-trip to the database"""
    db.execute(text("SELECT 1"))
    return {"status": "healthy", "database": "reachable"}


# Include routers
app.include_router(invoices.router, prefix=settings.API_V1_PREFIX, tags=["Invoices"])
app.include_router(subscriptions.router, prefix=f"{settings.API_V1_PREFIX}/subscriptions", tags=["Subscriptions"])
app.include_router(payments.router, prefix=settings.API_V1_PREFIX, tags=["Payments"])

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=True)
