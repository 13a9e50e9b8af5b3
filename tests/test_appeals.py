"""Tests for appeal grounds, penalty assessments and appeal precedents."""

from uuid import uuid4

import pytest

from app.db import appeals

COMPLAINT_ID = uuid4()


class TestGrounds:
    def test_listed_oldest_first_per_complaint(self, db) -> None:
        first = appeals.add_ground(
            COMPLAINT_ID, "reasonable_excuse", "FA 2009 Sch 55 para 23", "Hospital admission"
        )
        second = appeals.add_ground(
            COMPLAINT_ID,
            "special_circumstances",
            "FA 2009 Sch 55 para 16",
            "Bereavement",
            strength_assessment="moderate",
        )
        appeals.add_ground(uuid4(), "procedural_error", "TMA 1970 s 8", "Notice not served")

        grounds = appeals.list_grounds(COMPLAINT_ID)

        assert [g["id"] for g in grounds] == [first["id"], second["id"]]
        assert grounds[1]["strength_assessment"] == "moderate"

    def test_update_changes_only_given_fields(self, db) -> None:
        ground = appeals.add_ground(
            COMPLAINT_ID, "reasonable_excuse", "FA 2009 Sch 55 para 23", "Hospital admission"
        )

        updated = appeals.update_ground(ground["id"], {"strength_assessment": "strong"})

        assert updated["strength_assessment"] == "strong"
        assert updated["description"] == "Hospital admission"

    def test_update_unknown_ground(self, db) -> None:
        with pytest.raises(ValueError):
            appeals.update_ground(uuid4(), {"description": "x"})

    def test_remove(self, db) -> None:
        ground = appeals.add_ground(COMPLAINT_ID, "proportionality", "HRA 1998", "Penalty excessive")

        appeals.remove_ground(ground["id"])

        assert appeals.get_ground(ground["id"]) is None


class TestPenalties:
    def test_new_assessment_is_pending(self, db) -> None:
        penalty = appeals.add_penalty(
            COMPLAINT_ID,
            {"penalty_type": "late_filing", "penalty_regime": "FA 2009 Sch 55", "penalty_amount": 100.0},
        )

        assert penalty["appeal_status"] == "pending"
        assert penalty["complaint_id"] == str(COMPLAINT_ID)
        assert appeals.list_penalties(COMPLAINT_ID) == [penalty]

    def test_status_change_records_filed_date(self, db) -> None:
        penalty = appeals.add_penalty(
            COMPLAINT_ID, {"penalty_type": "late_payment", "penalty_regime": "FA 2009 Sch 56"}
        )

        filed = appeals.update_penalty_status(penalty["id"], "filed", "2026-03-01")
        reviewed = appeals.update_penalty_status(penalty["id"], "under_review")

        assert filed["appeal_filed_date"] == "2026-03-01"
        assert reviewed["appeal_status"] == "under_review"
        assert reviewed["appeal_filed_date"] == "2026-03-01"

    def test_unknown_status(self, db) -> None:
        with pytest.raises(ValueError):
            appeals.update_penalty_status(uuid4(), "won")


class TestPrecedentSearch:
    @pytest.fixture
    def precedents(self, db):
        return db.seed(
            "appeal_precedents",
            {
                "case_name": "Perrin v HMRC",
                "penalty_type": "late_filing",
                "ground_type": "reasonable_excuse",
                "summary": "Reasonable excuse test for late filing penalties",
            },
            {
                "case_name": "Hok Ltd v HMRC",
                "penalty_type": "late_filing",
                "ground_type": "proportionality",
                "summary": "Tribunal cannot discharge penalties on fairness grounds",
            },
            {
                "case_name": "Christine Ann Hesketh",
                "penalty_type": "late_payment",
                "ground_type": "reasonable_excuse",
                "summary": "Illness as a REASONABLE EXCUSE for late payment",
            },
        )

    def test_substring_match_on_summary(self, precedents) -> None:
        results = appeals.search_appeal_precedents("reasonable excuse")

        assert {r["case_name"] for r in results} == {"Perrin v HMRC", "Christine Ann Hesketh"}

    def test_filters_and_limit(self, precedents) -> None:
        late_filing = appeals.search_appeal_precedents(penalty_type="late_filing")
        excuse_payment = appeals.search_appeal_precedents(
            "  excuse ", penalty_type="late_payment", ground_type="reasonable_excuse"
        )

        assert len(late_filing) == 2
        assert [r["case_name"] for r in excuse_payment] == ["Christine Ann Hesketh"]
        assert len(appeals.search_appeal_precedents(limit=1)) == 1
