from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException

from storefront.core.config import settings
from storefront.core.errors import StorefrontError
from storefront.core.kafka import kafka_producer
from storefront.core.logging import setup_logging
from storefront.middleware.logging import LoggingMiddleware
from storefront.routers import cart as cart_router
from storefront.routers import metrics as metrics_router
from storefront.routers import orders as orders_router
from storefront.schemas.response import ApiError


setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application startup: starting Kafka producer")
    try:
        await kafka_producer.start()
    except Exception as e:
        logger.warning("Kafka producer not started: {error}", error=str(e))
    logger.info("Application startup completed")
    yield
    logger.info("Application shutdown: stopping Kafka producer")
    await kafka_producer.stop()
    logger.info("Application shutdown completed")


app = FastAPI(
    title="Storefront Service",
    swagger_ui_parameters={"persistAuthorization": True},
    lifespan=lifespan,
)


def _error(status_code: int, message: str, headers=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ApiError(error=message).model_dump(),
        headers=headers,
    )


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError):
    logger.warning(
        "Request failed: {method} {path} -> {status_code} '{error}'",
        method=request.method,
        path=request.url.path,
        status_code=exc.status_code,
        error=exc.message,
    )
    return _error(exc.status_code, exc.message)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return _error(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    logger.info(
        "Invalid request data for {method} {path}: {errors}",
        method=request.method,
        path=request.url.path,
        errors=[err.get("loc") for err in exc.errors()],
    )
    return _error(status.HTTP_400_BAD_REQUEST, "Invalid request data")


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.opt(exception=exc).error(
        "Unhandled error: {method} {path}",
        method=request.method,
        path=request.url.path,
    )
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


@app.get("/health")
async def health():
    return {"status": "ok", "service": settings.SERVICE_NAME}


app.add_middleware(LoggingMiddleware)

app.include_router(orders_router.router)
app.include_router(cart_router.router)
app.include_router(metrics_router.router)


if __name__ == "__main__":
    uvicorn.run("storefront.main:app", host="0.0.0.0", port=8000)
