from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

lead_transitions_total = Counter(
    "lead_transitions_total",
    "Applied lead status transitions by lead kind and outcome",
    ["kind", "outcome"],
)

lead_transition_rejections_total = Counter(
    "lead_transition_rejections_total",
    "Rejected lead status transitions by reason",
    ["reason"],
)

org_hierarchy_cycles_total = Counter(
    "org_hierarchy_cycles_total",
    "Manager cycles met while resolving subordinates",
)

stale_leads_reported_total = Counter(
    "stale_leads_reported_total",
    "Stale leads returned by the stale-lead report",
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _sanitize_path(path: str) -> str:
    return _UUID_RE.sub("{id}", path)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        route_path = getattr(route, "path_format", None) or getattr(route, "path", None)
        if isinstance(route_path, str) and route_path:
            return _PATH_PARAM_RE.sub("{id}", route_path)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_lead_transition(kind: str, requires_approval: bool) -> None:
    outcome = "awaiting_approval" if requires_approval else "applied"
    lead_transitions_total.labels(kind=kind, outcome=outcome).inc()


def observe_lead_transition_rejected(reason: str) -> None:
    lead_transition_rejections_total.labels(reason=reason).inc()


def observe_hierarchy_cycle() -> None:
    org_hierarchy_cycles_total.inc()


def observe_stale_leads(count: int) -> None:
    if count > 0:
        stale_leads_reported_total.inc(count)


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
