from fastapi import APIRouter, Depends
import logging
import time

from rate_engine.core.config import settings
from rate_engine.services.engine import RateEngine, get_rate_engine

logger = logging.getLogger('rate_engine.health')

router = APIRouter()


@router.get("/health")
def health_check(engine: RateEngine = Depends(get_rate_engine)):
    """Health check with registry and builtin store status"""

    start_time = time.time()

    try:
        active_tables = len(engine.registry.list_active_pricing_tables())
        registry_status = "ok"
    except Exception as e:
        logger.error(f"Table registry check failed: {e}")
        active_tables = 0
        registry_status = "error"

    builtin_zones = len(engine.builtin_store.zones) if engine.builtin_store is not None else 0

    response_time = round((time.time() - start_time) * 1000, 2)  # ms

    return {
        "status": "ok" if registry_status == "ok" else "error",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "timestamp": int(time.time()),
        "response_time_ms": response_time,
        "services": {
            "table_registry": registry_status,
            "builtin_store": "ok" if builtin_zones else "missing",
        },
        "active_tables": active_tables,
        "builtin_zones": builtin_zones,
        "cached_quotes": len(engine.cache),
    }
