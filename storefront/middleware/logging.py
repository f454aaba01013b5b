import uuid
import time

from loguru import logger
from starlette.requests import Request
from starlette.middleware.base import BaseHTTPMiddleware

from storefront.core.config import settings
from storefront.core.metrics import HTTP_REQUESTS_TOTAL, HTTP_REQUEST_DURATION_SECONDS


class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start_time = time.perf_counter()
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

        with logger.contextualize(request_id=request_id):
            response = await call_next(request)
            duration_seconds = time.perf_counter() - start_time

            # шаблон маршрута известен только после роутинга
            path = request.url.path
            route = request.scope.get("route")
            if route and hasattr(route, "path"):
                path = route.path

            logger.bind(
                request_path=request.url.path,
                method=request.method,
                status_code=response.status_code,
                process_time_ms=round(duration_seconds * 1000, 2),
            ).info("http_request_processed")

            try:
                HTTP_REQUESTS_TOTAL.labels(
                    service=settings.SERVICE_NAME,
                    method=request.method,
                    path=path,
                    status_code=str(response.status_code),
                ).inc()
                HTTP_REQUEST_DURATION_SECONDS.labels(
                    service=settings.SERVICE_NAME,
                    method=request.method,
                    path=path,
                ).observe(duration_seconds)
            except Exception:
                logger.exception("Error updating Prometheus HTTP metrics")

            response.headers["X-Request-ID"] = request_id
            return response
