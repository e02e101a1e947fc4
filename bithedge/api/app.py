"""
BitHedge — FastAPI Application
Service surface for the oracle and the quoting engines: /healthz, /metrics,
price reads, manual refresh, publish decision preview, and quotes.
"""
import asyncio
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse

from bithedge.config.settings import get_settings
from bithedge.oracle.errors import AggregationError
from bithedge.oracle.service import get_oracle_service
from bithedge.pricing.consistency import FormulaConsistencyChecker
from bithedge.pricing.errors import FormulaDivergenceError, InvalidParametersError, PricingError
from bithedge.pricing.models import ProtectionParameters, YieldParameters
from bithedge.pricing.premium_engine import PremiumCalculationEngine
from bithedge.pricing.yield_engine import YieldCalculationEngine
from bithedge.utils.helpers import utc_now, utc_timestamp
from bithedge.utils.logger import get_logger, setup_logging

logger = get_logger("api")

# Application state
app_state: Dict[str, Any] = {
    "instance_id": str(uuid.uuid4())[:8],
    "started_at": None,
    "quotes_served": 0,
    "quotes_rejected": 0,
    "errors": 0,
}

premium_engine = PremiumCalculationEngine()
yield_engine = YieldCalculationEngine()
consistency = FormulaConsistencyChecker()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan — startup and shutdown."""
    setup_logging()
    settings = get_settings()
    app_state["started_at"] = utc_timestamp()
    logger.info("bithedge_starting", version=settings.version, instance=app_state["instance_id"], asset=settings.asset)

    service = get_oracle_service()
    await service.initialize()

    stop = asyncio.Event()
    loop_task: Optional[asyncio.Task] = None
    if settings.oracle_loop_enabled:
        loop_task = asyncio.create_task(service.run_forever(stop))

    logger.info("bithedge_ready")
    yield

    logger.info("bithedge_shutting_down")
    stop.set()
    if loop_task is not None:
        await loop_task
    await service.shutdown()


app = FastAPI(
    title="BitHedge Core",
    description="Bitcoin price oracle and PUT protection quoting",
    version="1.0.0",
    lifespan=lifespan,
)


# ─── Error mapping ──────────────────────────────────────────────

def _error_body(exc: Exception, code: str) -> Dict[str, Any]:
    return {"error": code, "detail": str(exc), "timestamp": utc_timestamp()}


@app.exception_handler(PricingError)
async def pricing_error_handler(request: Request, exc: PricingError):
    if isinstance(exc, InvalidParametersError):
        app_state["quotes_rejected"] += 1
        body = _error_body(exc, exc.code)
        body["violations"] = exc.violations
        return JSONResponse(status_code=422, content=body)
    if isinstance(exc, FormulaDivergenceError):
        app_state["errors"] += 1
        return JSONResponse(status_code=500, content=_error_body(exc, exc.code))
    return JSONResponse(status_code=503, content=_error_body(exc, exc.code))


@app.exception_handler(AggregationError)
async def aggregation_error_handler(request: Request, exc: AggregationError):
    return JSONResponse(status_code=503, content=_error_body(exc, exc.code))


# ─── Health & Metrics ───────────────────────────────────────────

@app.get("/healthz", tags=["System"])
async def health_check():
    """Fast health check endpoint for load balancers and monitoring."""
    return {
        "status": "healthy",
        "instance": app_state["instance_id"],
        "uptime_since": app_state["started_at"],
        "timestamp": utc_timestamp(),
    }


@app.get("/metrics", tags=["System"])
async def metrics():
    settings = get_settings()
    service = get_oracle_service()
    return {
        "app": {
            "name": settings.app_name,
            "version": settings.version,
            "instance_id": app_state["instance_id"],
            "started_at": app_state["started_at"],
        },
        "quotes": {
            "served": app_state["quotes_served"],
            "rejected": app_state["quotes_rejected"],
            "errors": app_state["errors"],
        },
        "oracle": service.stats,
        "consistency": {"checks": consistency.checks, "divergences": consistency.divergences},
        "cache_stats": service.cache.stats,
        "asset": settings.asset,
        "timestamp": utc_timestamp(),
    }


# ─── Oracle ─────────────────────────────────────────────────────

@app.get("/api/v1/price", tags=["Oracle"])
async def current_price(history: int = Query(default=0, ge=0, le=1000)):
    """Latest aggregate, the per-source samples behind it and optional history.

    503 when there is no aggregate or it is too old.
    """
    service = get_oracle_service()
    latest = service.require_fresh()
    asset = service.aggregator().asset
    return {
        "asset": asset,
        "aggregate": latest.model_dump(mode="json"),
        "samples": {
            source: sample.model_dump(mode="json")
            for source, sample in service.cache.get_all_samples(asset).items()
        },
        "history": [
            {"price": a.price, "source_count": a.source_count, "computed_at": a.computed_at.isoformat()}
            for a in service.cache.get_history(asset, history)
        ],
        "last_published": service.last_published.model_dump(mode="json") if service.last_published else None,
        "timestamp": utc_timestamp(),
    }


@app.post("/api/v1/oracle/refresh", tags=["Oracle"])
async def refresh_price():
    """Run one aggregation cycle now (serialized with the timer)."""
    service = get_oracle_service()
    aggregated = await service.run_cycle()
    return {
        "aggregate": aggregated.model_dump(mode="json"),
        "publish_sequence": service.coordinator.sequence,
        "timestamp": utc_timestamp(),
    }


@app.get("/api/v1/oracle/publish-decision", tags=["Oracle"])
async def publish_decision():
    """Preview what the publish policy would decide for the latest aggregate."""
    service = get_oracle_service()
    latest = service.require_fresh()
    coordinator = service.coordinator
    decision = coordinator.publisher.evaluate(latest, coordinator.last_published, utc_now())
    return {
        "decision": decision.model_dump(mode="json"),
        "last_published": coordinator.last_published.model_dump(mode="json") if coordinator.last_published else None,
        "timestamp": utc_timestamp(),
    }


# ─── Quotes ─────────────────────────────────────────────────────

@app.post("/api/v1/quote/protection", tags=["Quotes"])
async def quote_protection(params: ProtectionParameters):
    as_of = utc_now()
    market = get_oracle_service().require_fresh(now=as_of)
    result = premium_engine.price_protection(params, market, as_of)

    body = {"quote": result.model_dump(mode="json"), "onchain_check": None}
    if get_settings().pricing.verify_onchain:
        report = consistency.verify(consistency.check_protection(params, market, result))
        body["onchain_check"] = report.to_dict()

    app_state["quotes_served"] += 1
    return body


@app.post("/api/v1/quote/yield", tags=["Quotes"])
async def quote_yield(params: YieldParameters):
    as_of = utc_now()
    market = get_oracle_service().require_fresh(now=as_of)
    result = yield_engine.price_yield(params, market, as_of)

    body = {"quote": result.model_dump(mode="json"), "onchain_check": None}
    if get_settings().pricing.verify_onchain:
        report = consistency.verify(consistency.check_yield(params, market, result))
        body["onchain_check"] = report.to_dict()

    app_state["quotes_served"] += 1
    return body
