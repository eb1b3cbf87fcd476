"""
Unit tests for rate normalization and symbol matching.
"""
import pytest

from core.models import Exchange
from core.rate_normalizer import (
    HISTORY_PREFIX, annualize, hourly_rate, match_symbol, period_hours_or_default,
    to_hourly, to_hyperliquid_symbol
)
from conftest import make_rate


class TestToHourly:
    """Tests for to_hourly and annualize."""

    def test_eight_hour_rate(self):
        assert to_hourly(0.0008, 8) == pytest.approx(0.0001)

    def test_hourly_rate_unchanged(self):
        assert to_hourly(0.00005, 1) == 0.00005

    def test_non_positive_period_rejected(self):
        with pytest.raises(ValueError):
            to_hourly(0.0001, 0)
        with pytest.raises(ValueError):
            to_hourly(0.0001, -8)

    def test_annualize(self):
        # 0.00005/h over 8760h is 43.8%
        assert annualize(0.00005) == pytest.approx(43.8)

    def test_annualize_negative(self):
        assert annualize(-0.0001) == pytest.approx(-87.6)

    @pytest.mark.parametrize("rate", [0.0008, -0.00003, 1e-7])
    @pytest.mark.parametrize("period", [1, 4, 8])
    def test_linear_in_rate(self, rate, period):
        assert annualize(to_hourly(2 * rate, period)) == pytest.approx(2 * annualize(to_hourly(rate, period)))


class TestPeriodDefaults:
    """Tests for venue default funding periods."""

    def test_explicit_period_wins(self):
        assert period_hours_or_default(make_rate(Exchange.LIGHTER, "BTC", 0.001, period_hours=4)) == 4

    def test_lighter_defaults_to_eight_hours(self):
        rate = make_rate(Exchange.LIGHTER, "BTC", 0.0008)
        assert period_hours_or_default(rate) == 8.0
        assert hourly_rate(rate) == pytest.approx(0.0001)

    def test_hyperliquid_defaults_to_one_hour(self):
        rate = make_rate(Exchange.HYPERLIQUID, "BTC", 0.0001)
        assert hourly_rate(rate) == pytest.approx(0.0001)


class TestSymbolTranslation:
    """Tests for 1000X / KX / kX translation."""

    def test_thousand_prefix_realtime(self):
        assert to_hyperliquid_symbol("1000BONK") == "KBONK"

    def test_thousand_prefix_history(self):
        assert to_hyperliquid_symbol("1000PEPE", HISTORY_PREFIX) == "kPEPE"

    def test_plain_symbol_unchanged(self):
        assert to_hyperliquid_symbol("BTC") == "BTC"
        assert to_hyperliquid_symbol("BTC", HISTORY_PREFIX) == "BTC"

    def test_match_exact_first(self):
        candidates = {"1000BONK": 1, "KBONK": 2}
        assert match_symbol("1000BONK", candidates) == ("1000BONK", 1)

    def test_match_translated(self):
        assert match_symbol("1000BONK", {"KBONK": 2}) == ("KBONK", 2)

    def test_no_match(self):
        assert match_symbol("DOGE", {"BTC": 1}) is None
        assert match_symbol("1000FLOKI", {"KBONK": 1}) is None
