"""
BitHedge — Integration Tests for the HTTP API
"""
import pytest
from fastapi.testclient import TestClient

import bithedge.api.app as api_module
from bithedge.api.app import app
from bithedge.data.cache.price_cache import PriceCache
from bithedge.oracle.models import PriceSample
from bithedge.oracle.publisher import DryRunLedgerClient
from bithedge.oracle.service import OracleService
from bithedge.utils.helpers import utc_now


@pytest.fixture
def service(monkeypatch):
    svc = OracleService(adapters=[], ledger=DryRunLedgerClient(), cache=PriceCache(ttl_seconds=60))
    monkeypatch.setattr(api_module, "get_oracle_service", lambda: svc)
    return svc


@pytest.fixture
def primed_service(service):
    now = utc_now()
    samples = [
        PriceSample(source_id=name, price=price, observed_at=now)
        for name, price in (("binance", 94250.0), ("coinbase", 94270.0), ("kraken", 94260.0))
    ]
    service.aggregate_once(samples, now)
    return service


@pytest.fixture
def client():
    return TestClient(app)


# ─── System ─────────────────────────────────────────────────────

class TestSystemEndpoints:
    def test_healthz(self, client):
        resp = client.get("/healthz")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"

    def test_metrics(self, client, primed_service):
        resp = client.get("/metrics")
        assert resp.status_code == 200
        body = resp.json()
        assert body["oracle"]["cycles"] == 1
        assert "divergences" in body["consistency"]
        assert body["cache_stats"]["total_history_points"] == 1


# ─── Oracle ─────────────────────────────────────────────────────

class TestOracleEndpoints:
    def test_price(self, client, primed_service):
        resp = client.get("/api/v1/price")
        assert resp.status_code == 200
        aggregate = resp.json()["aggregate"]
        assert aggregate["price"] == pytest.approx(94260.0, abs=10)
        assert aggregate["source_count"] == 3
        assert resp.json()["history"] == []

    def test_price_history(self, client, primed_service):
        resp = client.get("/api/v1/price", params={"history": 5})
        assert resp.status_code == 200
        history = resp.json()["history"]
        assert len(history) == 1
        assert history[0]["price"] == pytest.approx(94260.0, abs=10)
        assert history[0]["source_count"] == 3

    def test_price_history_limit_validated(self, client, primed_service):
        assert client.get("/api/v1/price", params={"history": -1}).status_code == 422

    def test_price_unavailable(self, client, service):
        resp = client.get("/api/v1/price")
        assert resp.status_code == 503
        assert resp.json()["error"] == "stale_aggregate"

    def test_publish_decision_preview(self, client, primed_service):
        resp = client.get("/api/v1/oracle/publish-decision")
        assert resp.status_code == 200
        decision = resp.json()["decision"]
        assert decision["should_publish"] is True
        assert decision["reason"] == "no_prior_publication"

    def test_refresh_without_sources(self, client, service):
        resp = client.post("/api/v1/oracle/refresh")
        assert resp.status_code == 503
        assert resp.json()["error"] == "insufficient_sources"


# ─── Quotes ─────────────────────────────────────────────────────

class TestQuoteEndpoints:
    def test_protection_quote(self, client, primed_service):
        resp = client.post(
            "/api/v1/quote/protection",
            json={"strike_selection_percent": 100, "protection_amount": 0.25, "duration_days": 30},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["quote"]["premium"] > 0
        assert body["quote"]["annualized_premium_percentage"] > 0
        assert body["quote"]["volatility_reliable"] is False
        assert body["onchain_check"]["within_tolerance"] is True

    def test_protection_invalid(self, client, primed_service):
        resp = client.post(
            "/api/v1/quote/protection",
            json={"strike_selection_percent": 10, "protection_amount": 0.25, "duration_days": 7},
        )
        assert resp.status_code == 422
        assert len(resp.json()["violations"]) == 2

    def test_protection_without_market(self, client, service):
        resp = client.post(
            "/api/v1/quote/protection",
            json={"strike_selection_percent": 100, "protection_amount": 0.25, "duration_days": 30},
        )
        assert resp.status_code == 503

    def test_yield_quote(self, client, primed_service):
        resp = client.post(
            "/api/v1/quote/yield",
            json={"risk_tier": "balanced", "commitment_amount": 1.0, "duration_days": 90},
        )
        assert resp.status_code == 200
        quote = resp.json()["quote"]
        assert quote["risk_tier"] == "balanced"
        assert quote["estimated_yield"] > 0
        assert quote["strike_price"] == pytest.approx(quote["market_price"] * 0.9)

    def test_yield_unknown_tier(self, client, primed_service):
        resp = client.post(
            "/api/v1/quote/yield",
            json={"risk_tier": "reckless", "commitment_amount": 1.0, "duration_days": 90},
        )
        assert resp.status_code == 422
