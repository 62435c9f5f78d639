"""Health report over breakers, maintenance mode, cache and latency."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any, Dict, Tuple

from .resilience.circuit_breaker import CircuitState

if TYPE_CHECKING:
    from .service import SuggestionService

logger = logging.getLogger("sitespeak_suggest.health")

HEALTHY = "healthy"
DEGRADED = "degraded"
UNHEALTHY = "unhealthy"

# Below this cache health score (with traffic) the service counts as degraded.
CACHE_HEALTH_FLOOR = 0.5


def circuit_breaker_health(status: Dict[str, Any]) -> bool:
    return status.get("state") == CircuitState.CLOSED.value


def run_health_checks(service: "SuggestionService") -> Tuple[bool, Dict[str, Any]]:
    """Execute every check and return ``(overall_healthy, detailed_report)``."""
    start_time = time.time()
    report: Dict[str, Any] = {"checks": {}}
    overall_healthy = True
    gateway = service.gateway

    report["checks"]["maintenance_mode"] = {"ok": not gateway.in_maintenance}
    if gateway.in_maintenance:
        overall_healthy = False

    try:
        statuses = gateway.breaker_status()
        report["circuit_breakers"] = statuses
        closed = [name for name, s in statuses.items() if circuit_breaker_health(s)]
        report["checks"]["circuit_breakers"] = {
            "ok": len(closed) == len(statuses),
            "count": len(statuses),
            "open": sorted(n for n, s in statuses.items() if s["state"] == CircuitState.OPEN.value),
        }
        if len(closed) != len(statuses):
            overall_healthy = False
    except Exception as exc:
        logger.error("Error during circuit breaker checks: %s", exc)
        report["checks"]["circuit_breaker_error"] = {"ok": False, "details": str(exc)}
        overall_healthy = False

    try:
        stats = service.cache.stats()
        report["cache_stats"] = stats
        cache_ok = stats["total_requests"] == 0 or stats["health_score"] >= CACHE_HEALTH_FLOOR
        report["checks"]["cache_health"] = {"ok": cache_ok, "details": f"score {stats['health_score']:.2f}"}
        if not cache_ok:
            overall_healthy = False
    except Exception as exc:
        logger.error("Error getting cache statistics: %s", exc)
        report["checks"]["cache_stats_error"] = {"ok": False, "details": str(exc)}

    latency = service.monitor.summary()
    report["latency"] = latency
    slow = sorted(op for op, s in latency.items() if s["target_ms"] and s["p95_ms"] > s["target_ms"])
    report["checks"]["latency"] = {"ok": not slow, "details": slow}
    if slow:
        overall_healthy = False

    report.update({
        "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        "service": "sitespeak-suggest",
        "duration_ms": round((time.time() - start_time) * 1000, 2),
        "overall_healthy": overall_healthy,
    })
    return overall_healthy, report


def health_report(service: "SuggestionService") -> Dict[str, Any]:
    """Summary with a single ``status``: healthy, degraded or unhealthy.

    Unhealthy means suggestions cannot reach the generator at all
    (maintenance mode, or the suggestion engine breaker open). Any other
    failing check is degraded.
    """
    overall_healthy, detailed = run_health_checks(service)
    breakers = detailed.get("circuit_breakers", {})
    engine_state = breakers.get("suggestion_engine", {}).get("state")

    if not detailed["checks"]["maintenance_mode"]["ok"] or engine_state == CircuitState.OPEN.value:
        status = UNHEALTHY
    elif overall_healthy:
        status = HEALTHY
    else:
        status = DEGRADED

    checks = detailed["checks"]
    return {
        "status": status,
        "timestamp": detailed["timestamp"],
        "duration_ms": detailed["duration_ms"],
        "checks": {
            "total": len(checks),
            "passing": len([c for c in checks.values() if c.get("ok", False)]),
            "failing": len([c for c in checks.values() if not c.get("ok", False)]),
        },
        "circuit_breakers": {
            "total": len(breakers),
            "open": len([b for b in breakers.values() if b.get("state") == CircuitState.OPEN.value]),
            "half_open": len([b for b in breakers.values() if b.get("state") == CircuitState.HALF_OPEN.value]),
        },
        "cache": detailed.get("cache_stats", {}),
        "latency": detailed.get("latency", {}),
    }
