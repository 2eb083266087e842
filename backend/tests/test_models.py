"""Tests for backend/revenue_leakage/pipeline/models.py — case parsing from ingestion dicts."""

from revenue_leakage.pipeline.models import Case, Receipt


class TestCaseFromDict:

    def test_party_pans(self, make_case_dict):
        case = Case.from_dict(make_case_dict())
        assert case.party_pans == {"ABCDE1234F", "PQRSX6789K"}

    def test_party_pans_skip_blank(self, make_case_dict):
        case = Case.from_dict(make_case_dict(parties_summary=[{"CODE": "CL", "NAME": "Ravi Kumar"}]))
        assert case.party_pans == set()

    def test_property_schedule(self, make_case_dict):
        case = Case.from_dict(make_case_dict())
        assert case.schedule is not None
        assert case.schedule.extent == 100

    def test_no_property_schedule(self, make_case_dict):
        assert Case.from_dict(make_case_dict(property_summary=None)).schedule is None


class TestReceiptFromDict:

    def test_missing_status_stays_unknown(self):
        assert Receipt.from_dict({"amount": 500000}).acc_canc == ""

    def test_status_normalised(self):
        assert Receipt.from_dict({"amount": 10, "ACC_CANC": " a "}).acc_canc == "A"

    def test_cash_lines_summed(self):
        receipt = Receipt.from_dict({"cash_paid": [{"AMOUNT": "1,000"}, {"AMOUNT": 250}], "ACC_CANC": "A"})
        assert receipt.amount == 1250
