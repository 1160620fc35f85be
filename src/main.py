from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

from src.core.config import settings
from src.core.database import create_all
from src.core.exceptions import AppException
from src.domains.completion import router as completion_router
from src.domains.dispatch import router as dispatch_router
from src.domains.rescuers import router as rescuers_router
from src.domains.tickets import router as tickets_router


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


app = FastAPI(
    title="SOS Bridge Dispatch API",
    description="Flood rescue ticket dispatch engine",
    version="1.0.0",
    docs_url=f"{settings.api_prefix}/docs",
    redoc_url=f"{settings.api_prefix}/redoc",
    openapi_url=f"{settings.api_prefix}/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AppException)
async def app_exception_handler(request: Request, exc: AppException):
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.detail,
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error_code": "INTERNAL_ERROR",
            "message": "Internal server error",
            "details": str(exc) if settings.debug else None,
        },
    )


app.include_router(tickets_router.router, prefix=settings.api_prefix)
app.include_router(rescuers_router.router, prefix=settings.api_prefix)
app.include_router(dispatch_router.router, prefix=settings.api_prefix)
app.include_router(completion_router.router, prefix=settings.api_prefix)


@app.on_event("startup")
async def startup_event():
    """Create registry tables when running on the sql backend"""
    if settings.store_backend == "sql":
        await create_all()
        logger.info("Registry tables ready")


@app.get("/health")
async def health_check():
    return {"status": "healthy", "version": "1.0.0", "store_backend": settings.store_backend}


@app.get("/")
async def root():
    return {
        "name": "SOS Bridge Dispatch API",
        "version": "1.0.0",
        "docs": f"{settings.api_prefix}/docs",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("src.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
