"""
BitHedge — Unit Tests for the Premium Calculation Engine and Pricing Kernel
"""
from datetime import timedelta

import pytest

from bithedge.config.settings import PricingSettings
from bithedge.oracle.models import AggregatedPrice
from bithedge.pricing.errors import (
    InvalidParametersError,
    MarketDataUnavailableError,
    StaleMarketDataError,
    UnreliableVolatilityError,
)
from bithedge.pricing.kernel import MIN_PREMIUM_PER_UNIT, put_premium_per_unit, scenario_prices
from bithedge.pricing.models import PolicyType, ProtectionParameters
from bithedge.pricing.premium_engine import PremiumCalculationEngine, price_protection


def _params(pct=100.0, amount=0.25, days=30, policy=PolicyType.PUT):
    return ProtectionParameters(
        strike_selection_percent=pct,
        protection_amount=amount,
        duration_days=days,
        policy_type=policy,
    )


# ─── Kernel ─────────────────────────────────────────────────────

class TestKernel:
    def test_atm_reference_values(self):
        out = put_premium_per_unit(94260.0, 94260.0, 0.425, 30)
        assert out.premium == pytest.approx(4579.0148, abs=1e-3)
        assert out.delta == pytest.approx(-0.4757107, abs=1e-6)
        assert out.vega == pytest.approx(10760.83, abs=0.01)
        assert out.intrinsic == 0.0
        assert out.gamma > 0
        assert out.theta < 0

    def test_zero_duration_is_intrinsic(self):
        out = put_premium_per_unit(90000.0, 100000.0, 0.5, 0)
        assert out.premium == pytest.approx(10000.0)
        assert out.time_value == 0.0
        assert out.delta == -1.0

    def test_zero_volatility_otm_is_worthless(self):
        assert put_premium_per_unit(100000.0, 90000.0, 0.0, 30).premium == 0.0

    def test_deep_otm_floored_at_one_ledger_unit(self):
        out = put_premium_per_unit(100000.0, 50000.0, 0.05, 30)
        assert out.premium == MIN_PREMIUM_PER_UNIT
        assert out.time_value > 0

    def test_rejects_bad_inputs(self):
        with pytest.raises(ValueError):
            put_premium_per_unit(0.0, 100.0, 0.4, 30)
        with pytest.raises(ValueError):
            put_premium_per_unit(100.0, 100.0, -0.1, 30)

    def test_scenario_grid_contains_strike(self):
        prices = scenario_prices(94260.0, 84834.0, 0.5, 21)
        assert 84834.0 in prices
        assert prices == sorted(prices)
        assert prices[0] == pytest.approx(47130.0)
        assert prices[-1] == pytest.approx(141390.0)

    def test_scenario_grid_no_duplicate_strike(self):
        prices = scenario_prices(100.0, 100.0, 0.5, 21)
        assert prices.count(100.0) == 1
        assert len(prices) == 21


# ─── Engine ─────────────────────────────────────────────────────

class TestPremiumEngine:
    def test_golden_quote(self, market, as_of):
        result = price_protection(_params(), market, as_of)
        assert result.premium == pytest.approx(1144.7537, abs=0.005)
        assert result.break_even_price == pytest.approx(89680.9852, abs=0.005)
        assert result.max_benefit == pytest.approx(23565.00, abs=0.005)
        assert result.premium_percentage == pytest.approx(4.85785, abs=1e-4)
        assert result.strike_price == pytest.approx(94260.0)
        assert result.market_computed_at == market.computed_at

    def test_annualized_premium(self, market, as_of):
        result = price_protection(_params(), market, as_of)
        assert result.annualized_premium_percentage == pytest.approx(result.premium_percentage * 365 / 30)
        assert result.annualized_premium_percentage == pytest.approx(59.1038, abs=0.01)

    def test_deterministic(self, market, as_of):
        engine = PremiumCalculationEngine(PricingSettings())
        assert engine.price_protection(_params(), market, as_of) == engine.price_protection(_params(), market, as_of)

    def test_component_breakdown_sums(self, market, as_of):
        result = price_protection(_params(pct=110.0), market, as_of)
        parts = result.component_breakdown
        assert parts.intrinsic_value + parts.time_value == pytest.approx(result.premium)
        assert parts.intrinsic_value == pytest.approx((103686.0 - 94260.0) * 0.25)

    @pytest.mark.parametrize("pct", [50.0, 80.0, 100.0, 120.0, 150.0])
    @pytest.mark.parametrize("days", [30, 90, 180, 360])
    def test_never_below_intrinsic(self, market, as_of, pct, days):
        result = price_protection(_params(pct=pct, amount=1.0, days=days), market, as_of)
        intrinsic = max(0.0, result.strike_price - result.market_price)
        assert result.premium >= intrinsic - 1e-9

    @pytest.mark.parametrize("pct", [50.0, 70.0, 100.0])
    @pytest.mark.parametrize("vol", [0.01, 0.05, 0.425])
    @pytest.mark.parametrize("days", [30, 360])
    def test_premium_positive_with_time_and_volatility(self, make_market, as_of, pct, vol, days):
        result = price_protection(_params(pct=pct, amount=1.0, days=days), make_market(volatility=vol), as_of)
        assert result.premium > 0
        assert result.premium_percentage > 0

    def test_monotonic_in_duration(self, market, as_of):
        premiums = [price_protection(_params(days=d), market, as_of).premium for d in (30, 90, 180, 360)]
        assert premiums == sorted(premiums)
        assert len(set(premiums)) == 4

    def test_monotonic_in_volatility(self, make_market, as_of):
        premiums = [
            price_protection(_params(), make_market(volatility=v), as_of).premium
            for v in (0.2, 0.425, 0.8)
        ]
        assert premiums[0] < premiums[1] < premiums[2]

    def test_duration_matched_volatility(self, make_market, as_of):
        market = make_market(volatility=0.4, volatility_by_days={30: 0.4, 90: 0.6, 360: 0.8})
        assert price_protection(_params(days=30), market, as_of).volatility == pytest.approx(0.4)
        assert price_protection(_params(days=180), market, as_of).volatility == pytest.approx(0.6)

        long_quote = price_protection(_params(days=360), market, as_of)
        flat = price_protection(_params(days=360), make_market(volatility=0.8), as_of)
        assert long_quote.volatility == pytest.approx(0.8)
        assert long_quote.premium == pytest.approx(flat.premium)

    def test_payoff_at_strike_is_minus_premium(self, market, as_of):
        result = price_protection(_params(pct=90.0), market, as_of)
        at_strike = [s for s in result.scenarios if s.price == result.strike_price]
        assert len(at_strike) == 1
        assert at_strike[0].payoff == pytest.approx(-result.premium)

    def test_payoff_below_break_even_is_positive(self, market, as_of):
        result = price_protection(_params(), market, as_of)
        deep = [s for s in result.scenarios if s.price < result.break_even_price - 1]
        assert deep and all(s.payoff > 0 for s in deep)


# ─── Errors ─────────────────────────────────────────────────────

class TestPremiumEngineErrors:
    def test_strike_outside_band(self, market, as_of):
        with pytest.raises(InvalidParametersError) as exc:
            price_protection(_params(pct=40.0), market, as_of)
        assert exc.value.code == "invalid_parameters"

    def test_all_violations_reported(self, market, as_of):
        with pytest.raises(InvalidParametersError) as exc:
            price_protection(_params(pct=200.0, amount=0.0, days=45, policy=PolicyType.CALL), market, as_of)
        assert len(exc.value.violations) == 4

    def test_non_finite_amount(self, market, as_of):
        with pytest.raises(InvalidParametersError):
            price_protection(_params(amount=float("nan")), market, as_of)

    def test_stale_market(self, market):
        with pytest.raises(StaleMarketDataError):
            price_protection(_params(), market, market.computed_at + timedelta(seconds=601))

    def test_no_data(self, now):
        with pytest.raises(MarketDataUnavailableError):
            price_protection(_params(), AggregatedPrice.no_data(now), now)

    def test_provisional_volatility_allowed_by_default(self, make_market, as_of):
        result = price_protection(_params(), make_market(reliable=False), as_of)
        assert result.volatility_reliable is False

    def test_provisional_volatility_refused_when_configured(self, make_market, as_of):
        engine = PremiumCalculationEngine(PricingSettings(require_reliable_volatility=True))
        with pytest.raises(UnreliableVolatilityError):
            engine.price_protection(_params(), make_market(reliable=False), as_of)

    def test_allow_list_is_configuration(self, market, as_of):
        engine = PremiumCalculationEngine(PricingSettings(allowed_durations=[30, 45]))
        assert engine.price_protection(_params(days=45), market, as_of).duration_days == 45
