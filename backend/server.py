from fastapi import FastAPI, APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware
from pymongo.errors import PyMongoError
import logging

from config import CORS_ORIGINS, ENABLE_SCHEDULER
from database import client, create_indexes
from errors import AppError, RemoteError
from services.scheduler import start_scheduler, stop_scheduler

# Import all routers
from routers import (
    auth_router,
    users_router,
    orders_router,
    conversations_router,
    notifications_router,
    shop_router
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Create the main app
app = FastAPI(title="Event Admin API", version="1.0.0")

# Create main API router with /api prefix
api_router = APIRouter(prefix="/api")

# Include all routers
api_router.include_router(auth_router)
api_router.include_router(users_router)
api_router.include_router(orders_router)
api_router.include_router(conversations_router)
api_router.include_router(notifications_router)
api_router.include_router(shop_router)


# Root endpoint
@api_router.get("/")
async def root():
    return {"message": "Event Admin API", "status": "running"}


# Include the main router
app.include_router(api_router)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error(f"[API] {request.method} {request.url.path}: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.code, "detail": exc.detail})


@app.exception_handler(PyMongoError)
async def database_error_handler(request: Request, exc: PyMongoError):
    logger.exception(f"[API] Database error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=RemoteError.status_code, content={"error": RemoteError.code, "detail": str(exc)})


# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup():
    await create_indexes()
    if ENABLE_SCHEDULER:
        start_scheduler()


@app.on_event("shutdown")
async def shutdown_db_client():
    stop_scheduler()
    client.close()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
