from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.responses import Response

http_requests_total = Counter("http_requests_total", "HTTP requests", ["method", "endpoint", "status"])
http_request_duration = Histogram("http_request_duration_seconds", "HTTP request duration", ["method", "endpoint"])
admin_actions_total = Counter("admin_actions_total", "Admin controller actions", ["admin", "action", "status"])
admin_action_duration = Histogram("admin_action_duration_seconds", "Admin controller action duration", ["admin", "action"])


async def metrics_endpoint():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
