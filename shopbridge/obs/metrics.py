# shopbridge/obs/metrics.py
import time

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware

http_requests_total = Counter("http_requests_total", "HTTP requests", ["method", "path", "code"])
http_request_duration = Histogram(
    "http_request_duration_seconds", "HTTP request duration seconds", ["method", "path"]
)

# Shopify 集成
shopify_invoices_created_total = Counter(
    "shopify_invoices_created_total", "Invoices created for Shopify orders"
)
shopify_api_errors_total = Counter("shopify_api_errors_total", "Shopify API errors", ["op"])
shopify_script_registrations_total = Counter(
    "shopify_script_registrations_total",
    "Script tag register/remove outcomes",
    ["op", "result"],
)


class PrometheusMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        # 用路由模板做 label，避免 store_id / order_id 撑爆基数
        route = request.scope.get("route")
        path = getattr(route, "path", None) or "unmatched"
        http_requests_total.labels(request.method, path, str(response.status_code)).inc()
        http_request_duration.labels(request.method, path).observe(elapsed)
        return response


router = APIRouter()


@router.get("/metrics", include_in_schema=False)
def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
