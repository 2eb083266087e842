"""Shared fixtures for the revenue leakage test suite."""

import copy
import random

import pytest

from revenue_leakage.config import RulesConfig
from revenue_leakage.pipeline.hotspots import LocationRecord
from revenue_leakage.pipeline.models import Case
from revenue_leakage.pipeline.reference import ReferenceData


# ═══════════════════════════════════════════════════
# Case fixtures (dicts shaped like ingestion output)
# ═══════════════════════════════════════════════════

CLEAN_CASE = {
    "SR_CODE": "SR01",
    "BOOK_NO": "1",
    "DOCT_NO": "1001",
    "REG_YEAR": "2024",
    "office": {"SR_CODE": "SR01", "SR_NAME": "Guntur Main", "district": "Guntur", "zone": "South"},
    "doc_type": {"TRAN_MAJ_CODE": "01", "TRAN_MIN_CODE": "01", "TRAN_DESC": "Sale"},
    "dates": {"P_DATE": "2024-03-01", "E_DATE": "2024-02-28", "R_DATE": "2024-03-02"},
    "property_summary": {
        "is_urban": False,
        "rural": {"VILLAGE_CODE": "V100", "SURVEY_NO": "12/1"},
        "extent": 100,
        "unit": "sq.yd",
        "land_nature": "Dry",
    },
    "parties_summary": [
        {"CODE": "CL", "NAME": "Ravi Kumar", "PAN_NO": "ABCDE1234F"},
        {"CODE": "EX", "NAME": "Lakshmi Devi", "PAN_NO": "PQRSX6789K"},
    ],
    "payable_breakdown": {
        "SD_PAYABLE": 300000,
        "TD_PAYABLE": 100000,
        "RF_PAYABLE": 50000,
        "DSD_PAYABLE": 0,
        "OTHER_FEE": 50000,
        "FINAL_TAXABLE_VALUE": 5000000,
    },
    "receipts": [
        {
            "C_RECEIPT_NO": "R-1",
            "RECEIPT_DATE": "2024-03-02",
            "amount": 500000,
            "ACC_CANC": "A",
            "BANK_CHALLAN_NO": "CH-1",
            "BANK_CHALLAN_DT": "2024-03-01",
        }
    ],
    "market_value": {"declared_value": 5000000, "expected_value": 5000000},
}

REFERENCE = {
    "rate_cards": [
        {"SRO_CODE": "SR01", "location_key": "VV100:S12/1", "location_type": "RURAL",
         "UNIT_RATE": 50000, "effective_from": "2023-04-01"},
    ],
    "prohibited_land": [],
    "exemption_policies": [
        {"code": "EX1", "eligible_doc_types": ["01"], "cap_amount": 50000},
    ],
}


@pytest.fixture
def make_case_dict():
    """Factory: deep copy of the clean case with top-level overrides applied."""
    def _make(**overrides):
        d = copy.deepcopy(CLEAN_CASE)
        d.update(copy.deepcopy(overrides))
        return d
    return _make


@pytest.fixture
def make_case(make_case_dict):
    def _make(**overrides):
        return Case.from_dict(make_case_dict(**overrides))
    return _make


@pytest.fixture
def gap_case(make_case):
    """Payable ₹5,00,000; paid ₹4,80,000 accepted plus ₹50,000 cancelled."""
    return make_case(receipts=[
        {"C_RECEIPT_NO": "R-1", "RECEIPT_DATE": "2024-03-02", "amount": 480000, "ACC_CANC": "A",
         "BANK_CHALLAN_NO": "CH-1", "BANK_CHALLAN_DT": "2024-03-01"},
        {"C_RECEIPT_NO": "R-2", "RECEIPT_DATE": "2024-03-02", "amount": 50000, "ACC_CANC": "C"},
    ])


@pytest.fixture
def config():
    return RulesConfig().validate()


@pytest.fixture
def reference_dict():
    return copy.deepcopy(REFERENCE)


@pytest.fixture
def reference(reference_dict):
    return ReferenceData.from_dict(reference_dict)


@pytest.fixture
def empty_reference():
    return ReferenceData()


# ═══════════════════════════════════════════════════
# MV location fixtures
# ═══════════════════════════════════════════════════

VILLAGES = ["Kondapuram", "Nallampalli", "Peddur", "Thiruvalam", "Mettur", "Sarapadu"]


@pytest.fixture
def location_factory():
    """Deterministic synthetic locations driven by an injected RNG."""
    def _make(n: int = 200, rng: random.Random | None = None) -> list[LocationRecord]:
        rng = rng or random.Random(42)
        locations = []
        for i in range(n):
            sro = f"SR{rng.randint(1, 12):02d}"
            urban = rng.random() > 0.55
            label = (
                f"Ward {rng.randint(1, 9)}, Block {rng.randint(1, 6)}-{i}"
                if urban else f"Village {rng.choice(VILLAGES)} Sy.{rng.randint(41, 180)}-{i}"
            )
            roll = rng.random()
            if roll < 0.05:
                drr = rng.uniform(0.35, 0.49)
            elif roll < 0.15:
                drr = rng.uniform(0.5, 0.69)
            elif roll < 0.3:
                drr = rng.uniform(0.7, 0.84)
            else:
                drr = rng.uniform(0.85, 1.18)
            rate = float(rng.randint(6000, 22000))
            low = drr < 0.85
            txns = rng.randint(5, 24) if low else rng.randint(1, 20)
            locations.append(LocationRecord(
                sro_code=sro,
                location_label=label,
                drr=round(drr, 2),
                transaction_count=txns,
                consecutive_low_periods=rng.randint(2, 4) if low else rng.randint(0, 3),
                rate_card_unit_rate=rate,
                median_declared=round(rate * drr),
                estimated_loss=float(max(0.0, rate - rate * drr) * txns * rng.randint(35, 120)),
                sro_name=f"Office {sro}",
                location_type="URBAN" if urban else "RURAL",
            ))
        return locations
    return _make
