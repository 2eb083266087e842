"""Tests for backend/revenue_leakage/pipeline/trends.py — MV dashboard detectors."""

import pytest

from revenue_leakage.pipeline.hotspots import LocationRecord
from revenue_leakage.pipeline.trends import (
    DeclaredGrowth,
    OfficeDrrSummary,
    RateCardGrowth,
    SeasonalSeries,
    compare_office_pairs,
    compare_offices,
    detect_declared_divergence,
    detect_rate_card_anomalies,
    detect_seasonal_patterns,
    office_drr_summaries,
)


def _growth(label, current, prev=100.0, sro="SR01"):
    return RateCardGrowth(location_label=label, sro_code=sro, prev_rate=prev, current_rate=current)


def _declared(label, rate_growth, quarters=(0.0, 0.0, 0.0, 0.0)):
    return DeclaredGrowth(location_label=label, sro_code="SR01",
                          quarterly_growth=tuple(quarters), rate_card_growth=rate_growth)


# ═══════════════════════════════════════════════════
# 1. Rate card growth anomalies
# ═══════════════════════════════════════════════════

class TestRateCardAnomalies:

    def test_supplied_office_stats(self, config):
        rows = [
            _growth("Village Peddur", 158.0),
            _growth("Village Mettur", 95.0),
            _growth("Village Sarapadu", 110.0),
        ]
        anomalies = detect_rate_card_anomalies(rows, config, office_stats={"SR01": (10.0, 5.0)})

        assert [a.location_label for a in anomalies] == ["Village Peddur", "Village Mettur"]
        spike, dip = anomalies
        assert spike.z_score == 9.6
        assert spike.growth_pct == 58.0
        assert spike.severity == "Critical"
        assert spike.rule_id == "R-MV-001"
        assert dip.z_score == -3.0
        assert dip.severity == "High"
        assert dip.rule_id == "R-MV-002"
        assert dip.sro_avg_growth == 10.0

    def test_stats_computed_from_office_rows(self, config):
        rows = [_growth(f"Village {i}", 110.0, sro="SR02") for i in range(9)]
        rows.append(_growth("Village Outlier", 160.0, sro="SR02"))
        (anomaly,) = detect_rate_card_anomalies(rows, config)
        assert anomaly.location_label == "Village Outlier"
        assert anomaly.z_score == 3.0
        assert anomaly.severity == "High"
        assert anomaly.sro_avg_growth == 15.0

    def test_single_location_office_skipped(self, config):
        assert detect_rate_card_anomalies([_growth("Village Peddur", 500.0)], config) == []

    def test_zero_spread_skipped(self, config):
        rows = [_growth(f"Village {i}", 120.0) for i in range(5)]
        assert detect_rate_card_anomalies(rows, config) == []

    def test_missing_previous_rate_ignored(self, config):
        rows = [_growth("Village Peddur", 500.0, prev=0.0)]
        assert detect_rate_card_anomalies(rows, config, office_stats={"SR01": (10.0, 5.0)}) == []

    def test_from_dict_accepts_rate_card_columns(self):
        row = RateCardGrowth.from_dict({"location_label": "X", "sro_code": "SR01",
                                        "PRE_REV_RATE": "1,000", "REV_RATE": 1200})
        assert row.growth_pct == pytest.approx(20.0)


# ═══════════════════════════════════════════════════
# 2. Declared value divergence
# ═══════════════════════════════════════════════════

class TestDeclaredDivergence:

    def test_high_divergence(self, config):
        (flag,) = detect_declared_divergence([_declared("A", 16.0)], config)
        assert flag.rule_id == "R-MV-005"
        assert flag.severity == "High"
        assert flag.divergence == 16.0

    def test_falling_last_quarter(self, config):
        (flag,) = detect_declared_divergence([_declared("A", 10.0, (2, 2, 2, -1))], config)
        assert flag.divergence == 8.8
        assert flag.rule_id == "R-MV-004"
        assert flag.severity == "Medium"

    def test_watch(self, config):
        (flag,) = detect_declared_divergence([_declared("A", 10.0, (2, 2, 2, 2))], config)
        assert flag.rule_id == "R-MV-003"
        assert flag.severity == "Watch"

    def test_below_floor_not_flagged(self, config):
        assert detect_declared_divergence([_declared("A", 4.0)], config) == []

    def test_widest_first(self, config):
        rows = [_declared("A", 8.0), _declared("B", 20.0), _declared("C", 12.0)]
        assert [f.location_label for f in detect_declared_divergence(rows, config)] == ["B", "C", "A"]

    def test_from_dict_quarter_columns(self):
        row = DeclaredGrowth.from_dict({
            "location_label": "A", "sro_code": "SR01", "rate_card_growth": 12,
            "q1_growth": 1, "q2_growth": 2, "q3_growth": 3, "q4_growth": -4,
        })
        assert row.quarterly_growth == (1.0, 2.0, 3.0, -4.0)

    def test_from_dict_rejects_wrong_length(self):
        with pytest.raises(ValueError):
            DeclaredGrowth.from_dict({"quarterly_growth": [1, 2, 3], "rate_card_growth": 5})


# ═══════════════════════════════════════════════════
# 3. Office comparison
# ═══════════════════════════════════════════════════

class TestCompareOffices:

    def test_flagged_pair(self, config):
        a = OfficeDrrSummary("SR01", 1.10, rate_card_avg=12000, declared_avg=13200)
        b = OfficeDrrSummary("SR02", 0.70, rate_card_avg=10000, declared_avg=7000)
        result = compare_offices(a, b, config)
        assert result.drr_gap == 0.4
        assert result.is_flagged
        assert result.severity == "High"
        assert result.lower_drr_sro == "SR02"
        assert result.rate_card_gap_pct == 16.7
        assert result.declared_gap_pct == 47.0

    def test_small_gap(self, config):
        result = compare_offices(OfficeDrrSummary("SR01", 0.70), OfficeDrrSummary("SR02", 0.90), config)
        assert not result.is_flagged
        assert result.severity == "Medium"
        assert result.lower_drr_sro == "SR01"
        assert result.rate_card_gap_pct == 0.0

    def test_pairs_sorted_by_gap(self, config):
        s1, s2, s3 = (OfficeDrrSummary("SR01", 1.10), OfficeDrrSummary("SR02", 0.70),
                      OfficeDrrSummary("SR03", 0.95))
        results = compare_office_pairs([(s1, s3), (s1, s2)], config)
        assert [(c.sro_a.code, c.sro_b.code) for c in results] == [("SR01", "SR02"), ("SR01", "SR03")]

    def test_summaries_from_locations(self):
        locations = [
            LocationRecord("SR01", "A", 0.60, 10, 2, rate_card_unit_rate=1000, median_declared=600),
            LocationRecord("SR01", "B", 0.80, 5, 0, rate_card_unit_rate=3000, median_declared=2400),
            LocationRecord("SR02", "C", 1.00, 7, 0, rate_card_unit_rate=500, median_declared=500),
        ]
        summaries = office_drr_summaries(locations)
        assert list(summaries) == ["SR01", "SR02"]
        assert summaries["SR01"].avg_drr == 0.7
        assert summaries["SR01"].txn_count == 15
        assert summaries["SR01"].rate_card_avg == 2000.0
        assert summaries["SR01"].declared_avg == 1500.0


# ═══════════════════════════════════════════════════
# 4. Seasonal patterns
# ═══════════════════════════════════════════════════

class TestSeasonalPatterns:

    def test_persistent_dips(self, config):
        series = SeasonalSeries("Village Peddur", "SR01",
                                (0.0, -0.2, 0.1, -0.16, 0.0, 0.05, -0.15, 0, 0, 0, 0, 0))
        (pattern,) = detect_seasonal_patterns([series], config)
        assert pattern.persistent_alerts == (1, 3)
        assert pattern.to_dict()["persistent_alerts"] == [1, 3]

    def test_single_dip_not_reported(self, config):
        series = SeasonalSeries("Village Peddur", "SR01", (0.0, -0.3, 0.0))
        assert detect_seasonal_patterns([series], config) == []

    def test_empty_series(self, config):
        assert detect_seasonal_patterns([SeasonalSeries("X", "SR01", ())], config) == []
