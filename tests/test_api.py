"""API tests with auth overridden and the db routed to the in-memory fake."""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from app.core.auth import AuthContext, get_current_user, require_auth
from app.core.llm import LLMError
from app.main import app

ORG_ID = uuid4()
OTHER_ORG_ID = uuid4()


@pytest.fixture
def client():
    yield TestClient(app)
    app.dependency_overrides.clear()


def _login(role: str = "user", organization_id=ORG_ID) -> AuthContext:
    auth = AuthContext(user_id=uuid4(), token="test-token", role=role, organization_id=organization_id)
    app.dependency_overrides[require_auth] = lambda: auth
    app.dependency_overrides[get_current_user] = lambda: auth
    return auth


def _seed_complaint(db, organization_id=ORG_ID) -> dict:
    (complaint,) = db.seed(
        "complaints",
        {
            "organization_id": str(organization_id),
            "complaint_reference": "CLIENT-001",
            "status": "assessment",
            "timeline": [],
        },
    )
    return complaint


class TestAuth:
    def test_missing_credentials_are_rejected(self, client) -> None:
        response = client.get("/v1/complaints")
        assert response.status_code == 401

    def test_admin_endpoint_requires_admin_role(self, client, db) -> None:
        _login("user")
        response = client.post("/v1/jobs/cleanup")
        assert response.status_code == 403

    def test_manager_counts_as_admin(self, client, db) -> None:
        _login("manager")
        response = client.post("/v1/jobs/cleanup", params={"days": 30})
        assert response.status_code == 200
        assert response.json() == {"deleted": 0}


class TestComplaintsApi:
    def test_create_records_context_in_timeline(self, client, db) -> None:
        _login()
        response = client.post(
            "/v1/complaints",
            json={
                "organization_id": str(ORG_ID),
                "client_reference": "CLIENT-042",
                "context": "Penalty issued despite timely filing",
            },
        )

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "assessment"
        assert body["complaint_reference"] == "CLIENT-042"
        assert body["timeline"][0]["type"] == "context_provided"

    def test_create_for_other_organization_is_forbidden(self, client, db) -> None:
        _login()
        response = client.post(
            "/v1/complaints",
            json={"organization_id": str(OTHER_ORG_ID), "client_reference": "X"},
        )
        assert response.status_code == 403

    def test_other_organization_complaint_is_hidden(self, client, db) -> None:
        complaint = _seed_complaint(db, OTHER_ORG_ID)
        _login()
        response = client.get(f"/v1/complaints/{complaint['id']}")
        assert response.status_code == 403

    def test_unknown_complaint_is_404(self, client, db) -> None:
        _login()
        response = client.get(f"/v1/complaints/{uuid4()}")
        assert response.status_code == 404

    def test_status_change_appends_timeline_event(self, client, db) -> None:
        complaint = _seed_complaint(db)
        _login()

        response = client.patch(
            f"/v1/complaints/{complaint['id']}/status",
            json={"status": "active", "notes": "Letter sent"},
        )

        assert response.status_code == 200
        event = response.json()["timeline"][-1]
        assert event["type"] == "status_change"
        assert event["summary"] == "Status changed from assessment to active"

    def test_invalid_status_is_422(self, client, db) -> None:
        complaint = _seed_complaint(db)
        _login()
        response = client.patch(f"/v1/complaints/{complaint['id']}/status", json={"status": "won"})
        assert response.status_code == 422

    def test_user_without_organization_gets_empty_stats(self, client, db) -> None:
        _login(organization_id=None)
        response = client.get("/v1/complaints/outcomes/stats")
        assert response.status_code == 200
        assert response.json()["total"] == 0


class TestLettersApi:
    def test_locked_letter_cannot_be_edited(self, client, db) -> None:
        complaint = _seed_complaint(db)
        (letter,) = db.seed(
            "generated_letters",
            {"complaint_id": complaint["id"], "letter_type": "initial_complaint", "letter_content": "Dear HMRC"},
        )
        _login()

        assert client.post(f"/v1/letters/{letter['id']}/lock").status_code == 200
        response = client.patch(f"/v1/letters/{letter['id']}", json={"letter_content": "Edited"})

        assert response.status_code == 409

    def test_sent_letter_cannot_be_deleted(self, client, db) -> None:
        complaint = _seed_complaint(db)
        (letter,) = db.seed(
            "generated_letters",
            {"complaint_id": complaint["id"], "letter_type": "initial_complaint", "letter_content": "Dear HMRC"},
        )
        _login()

        sent = client.post(f"/v1/letters/{letter['id']}/sent", json={"sent_method": "post"})
        assert sent.status_code == 200
        assert sent.json()["sent_method"] == "post"

        response = client.delete(f"/v1/letters/{letter['id']}")
        assert response.status_code == 409

        timeline = db.tables["complaints"][0]["timeline"]
        assert timeline[-1]["type"] == "letter_sent"


def _sse_events(body: str) -> list[dict]:
    return [json.loads(line[len("data: "):]) for line in body.splitlines() if line.startswith("data: ")]


class TestLetterStreamApi:
    def test_streams_progress_then_complete(self, client, db) -> None:
        complaint = _seed_complaint(db)
        _login()
        model = AsyncMock(side_effect=["FACT SHEET", "STRUCTURED LETTER", "Dear HMRC, final letter."])

        with patch("app.chains.letter_pipeline.call_openrouter_async", model):
            response = client.post(
                "/v1/letters/generate/stream",
                json={"complaint_id": complaint["id"], "analysis": {"success_rate": 80}},
            )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        events = _sse_events(response.text)
        overall = [e["percent"] for e in events if e.get("stage") == "overall"]
        assert overall == [20, 50, 80, 100]

        complete = events[-1]
        assert complete["type"] == "complete"
        assert complete["letter"] == "Dear HMRC, final letter."
        assert complete["letter_id"] == db.tables["generated_letters"][0]["id"]
        assert complete["time_logged_minutes"] == db.tables["time_logs"][0]["minutes_spent"]

    def test_pipeline_failure_emits_error_event(self, client, db) -> None:
        complaint = _seed_complaint(db)
        _login()
        model = AsyncMock(side_effect=["FACT SHEET", RuntimeError("model timeout")])

        with patch("app.chains.letter_pipeline.call_openrouter_async", model):
            response = client.post(
                "/v1/letters/generate/stream",
                json={"complaint_id": complaint["id"], "analysis": {}},
            )

        events = _sse_events(response.text)
        assert events[-1] == {"type": "error", "message": "Letter generation failed"}
        assert not any(e["type"] == "complete" for e in events)
        assert "generated_letters" not in db.tables

    def test_unknown_complaint_is_404_before_streaming(self, client, db) -> None:
        _login()
        response = client.post(
            "/v1/letters/generate/stream",
            json={"complaint_id": str(uuid4()), "analysis": {}},
        )
        assert response.status_code == 404


class TestDocumentUploadApi:
    def test_text_upload_is_stored_anonymised(self, client, db) -> None:
        complaint = _seed_complaint(db)
        _login()

        response = client.post(
            "/v1/documents/upload",
            data={"complaint_id": complaint["id"], "document_type": "hmrc_letter"},
            files={"file": ("letter.txt", b"UTR 1234567890. Penalty of \xc2\xa3100 issued.", "text/plain")},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["ocr_job_id"] is None
        document = body["document"]
        assert document["file_path"].startswith(f"{complaint['id']}/hmrc_letter/")
        assert document["file_path"].endswith("_letter.txt")
        assert "1234567890" not in document["processed_data"]["text"]
        assert document["processed_data"]["extraction_method"] == "text"
        assert [path for _, path in db.objects] == [document["file_path"]]
        assert "job_queue" not in db.tables

    def test_scanned_pdf_queues_ocr_job(self, client, db) -> None:
        fitz = pytest.importorskip("fitz")
        pdf = fitz.open()
        pdf.new_page().insert_text((72, 72), "HMRC letter about your late filing penalty appeal.")
        pdf.new_page()
        raw_bytes = pdf.tobytes()
        pdf.close()
        complaint = _seed_complaint(db)
        _login()

        response = client.post(
            "/v1/documents/upload",
            data={"complaint_id": complaint["id"], "document_type": "evidence"},
            files={"file": ("scan.pdf", raw_bytes, "application/pdf")},
        )

        assert response.status_code == 201
        body = response.json()
        (job,) = db.tables["job_queue"]
        assert body["ocr_job_id"] == job["id"]
        assert job["type"] == "document_ocr"
        assert job["payload"] == {"document_id": body["document"]["id"]}
        assert body["document"]["processed_data"]["ocr_pages"] == [2]

    def test_enqueue_failure_still_returns_document(self, client, db) -> None:
        fitz = pytest.importorskip("fitz")
        pdf = fitz.open()
        pdf.new_page().insert_text((72, 72), "Statement of account.")
        pdf.new_page()
        raw_bytes = pdf.tobytes()
        pdf.close()
        complaint = _seed_complaint(db)
        _login()
        db.failing_tables.add("job_queue")

        response = client.post(
            "/v1/documents/upload",
            data={"complaint_id": complaint["id"], "document_type": "evidence"},
            files={"file": ("scan.pdf", raw_bytes, "application/pdf")},
        )

        assert response.status_code == 201
        assert response.json()["ocr_job_id"] is None
        assert len(db.tables["documents"]) == 1

    def test_failed_row_insert_removes_stored_file(self, client, db) -> None:
        complaint = _seed_complaint(db)
        _login()
        db.failing_tables.add("documents")

        response = client.post(
            "/v1/documents/upload",
            data={"complaint_id": complaint["id"], "document_type": "response"},
            files={"file": ("reply.txt", b"Thank you for your letter.", "text/plain")},
        )

        assert response.status_code == 500
        assert db.objects == {}


class TestFollowUpApi:
    def test_unanswered_letter_becomes_chase_saved_as_initial(self, client, db) -> None:
        complaint = _seed_complaint(db)
        _login()

        with patch(
            "app.api.letters.generate_follow_up_letter", new=AsyncMock(return_value="Dear HMRC, we are still waiting.")
        ):
            response = client.post(
                "/v1/letters/follow-up",
                json={"complaint_id": complaint["id"], "original_letter_date": "2025-01-06"},
            )

        assert response.status_code == 200
        body = response.json()
        assert body["follow_up_type"] == "chase"
        assert body["letter_id"] is not None
        saved = db.tables["generated_letters"][0]
        assert saved["letter_type"] == "initial_complaint"
        assert saved["notes"] == "Follow-up: chase"

    def test_model_failure_is_502(self, client, db) -> None:
        complaint = _seed_complaint(db)
        _login()

        with patch(
            "app.api.letters.generate_follow_up_letter", new=AsyncMock(side_effect=LLMError("timeout"))
        ):
            response = client.post(
                "/v1/letters/follow-up",
                json={"complaint_id": complaint["id"], "original_letter_date": "2025-01-06"},
            )

        assert response.status_code == 502
        assert "generated_letters" not in db.tables


class TestJobsApi:
    def test_enqueue_then_cancel(self, client, db) -> None:
        _login("admin")
        created = client.post("/v1/jobs", json={"type": "document_ocr", "payload": {"document_id": "d1"}})
        assert created.status_code == 201
        job_id = created.json()["id"]

        cancelled = client.post(f"/v1/jobs/{job_id}/cancel")
        assert cancelled.status_code == 200
        assert cancelled.json()["status"] == "cancelled"

        again = client.post(f"/v1/jobs/{job_id}/cancel")
        assert again.status_code == 409

    def test_stats_count_every_status(self, client, db) -> None:
        db.seed("job_queue", {"type": "document_ocr", "status": "pending"})
        _login()

        response = client.get("/v1/jobs/stats")

        assert response.status_code == 200
        assert response.json()["pending"] == 1
        assert response.json()["failed"] == 0


class TestKnowledgeApi:
    def test_unknown_manual_codes_are_rejected(self, client, db) -> None:
        _login("admin")
        response = client.post("/v1/knowledge/ingest", params={"codes": ["dmbm", "nope"]})
        assert response.status_code == 400
        assert "nope" in response.json()["detail"]

    def test_ingest_queues_sync_job(self, client, db) -> None:
        _login("admin")
        response = client.post("/v1/knowledge/ingest", params={"codes": ["dmbm"]})

        assert response.status_code == 202
        job = db.tables["job_queue"][0]
        assert job["type"] == "sync_knowledge_base"
        assert job["payload"] == {"codes": ["DMBM"]}

    def test_chat_creates_conversation_and_stores_messages(self, client, db) -> None:
        auth = _login()
        answer = {"answer": "See CRG4025.", "sources": [{"id": "kb-1", "title": "CRG4025"}]}

        with patch(
            "app.api.knowledge.chat_with_knowledge_base", new=AsyncMock(return_value=answer)
        ):
            response = client.post("/v1/knowledge/chat", json={"message": "What about delays?"})

        assert response.status_code == 200
        assert response.json()["answer"] == "See CRG4025."
        conversation = db.tables["kb_chat_conversations"][0]
        assert conversation["user_id"] == str(auth.user_id)
        roles = [m["role"] for m in db.tables["kb_chat_messages"]]
        assert roles == ["user", "assistant"]


class TestTimeApi:
    def test_log_activity_rounds_to_units(self, client, db) -> None:
        complaint = _seed_complaint(db)
        _login()

        response = client.post(
            "/v1/time",
            json={"complaint_id": complaint["id"], "activity": "Client call", "duration": 5},
        )

        assert response.status_code == 201
        assert response.json()["minutes_spent"] == 12
        assert response.json()["formatted"] == "12m"


def test_analysis_is_rate_limited(client, db) -> None:
    _login()
    statuses = [
        client.post("/v1/analysis/analyze", json={"document_id": str(uuid4())}).status_code
        for _ in range(21)
    ]
    assert statuses[:20] == [404] * 20
    assert statuses[20] == 429
    assert [r["action"] for r in db.tables["audit_logs"]] == ["rate_limit"]


class TestCorrespondenceApi:
    def test_sent_letter_gets_deadline(self, client, db) -> None:
        complaint = _seed_complaint(db)
        _login()

        response = client.post(
            f"/v1/complaints/{complaint['id']}/correspondence",
            json={"direction": "sent", "summary": "Tier 1 complaint posted"},
        )

        assert response.status_code == 200
        event = response.json()["timeline"][-1]
        assert event["type"] == "sent"
        assert "response_deadline" in event

    def test_blank_summary_is_422(self, client, db) -> None:
        complaint = _seed_complaint(db)
        _login()

        response = client.post(
            f"/v1/complaints/{complaint['id']}/correspondence",
            json={"direction": "received", "summary": ""},
        )

        assert response.status_code == 422

    def test_needing_attention_lists_due_responses(self, client, db) -> None:
        complaint = _seed_complaint(db)
        _seed_complaint(db, OTHER_ORG_ID)
        db.tables["complaints"][0]["status"] = "active"
        _login()
        client.post(
            f"/v1/complaints/{complaint['id']}/correspondence",
            json={"direction": "sent", "summary": "Chaser"},
        )
        deadline = datetime.now(timezone.utc) + timedelta(days=2)
        db.tables["complaints"][0]["timeline"][-1]["response_deadline"] = deadline.isoformat()

        response = client.get("/v1/complaints/needing-attention")

        assert response.status_code == 200
        assert [c["id"] for c in response.json()["complaints"]] == [complaint["id"]]


class TestOutcomeApi:
    def test_close_queues_learning_extraction(self, client, db) -> None:
        complaint = _seed_complaint(db)
        _login()

        response = client.post(
            f"/v1/complaints/{complaint['id']}/outcome",
            json={"outcome_type": "successful_full", "compensation_received": 150},
        )

        assert response.status_code == 201
        outcome = response.json()
        assert outcome["learning_extracted"] is False
        (job,) = db.tables["job_queue"]
        assert job["type"] == "extract_outcome_learnings"
        assert job["payload"] == {"outcome_id": outcome["id"]}
        assert job["priority"] == 3

    def test_enqueue_failure_still_closes(self, client, db) -> None:
        complaint = _seed_complaint(db)
        db.failing_tables.add("job_queue")
        _login()

        response = client.post(
            f"/v1/complaints/{complaint['id']}/outcome", json={"outcome_type": "unsuccessful"}
        )

        assert response.status_code == 201
        assert db.tables["complaints"][0]["status"] == "closed"

    def test_process_pending_is_admin_only(self, client, db) -> None:
        db.seed(
            "case_outcomes",
            {"outcome_type": "unsuccessful", "learning_extracted": False},
            {"outcome_type": "successful_full", "learning_extracted": False},
            {"outcome_type": "successful_full", "learning_extracted": True},
        )
        _login("user")
        assert client.post("/v1/complaints/outcomes/process-pending").status_code == 403

        _login("admin")
        response = client.post("/v1/complaints/outcomes/process-pending")

        assert response.status_code == 202
        assert response.json()["queued"] == 2
        assert {j["type"] for j in db.tables["job_queue"]} == {"extract_outcome_learnings"}

    def test_learning_stats(self, client, db) -> None:
        db.seed(
            "case_outcomes",
            {
                "outcome_type": "successful_partial",
                "hmrc_department": "PAYE",
                "learning_extracted": True,
                "days_to_resolution": 21,
                "effective_arguments": ["CRG5225 professional fees"],
            },
        )
        _login()

        response = client.get(
            "/v1/complaints/outcomes/learnings", params={"hmrc_department": "PAYE"}
        )

        assert response.status_code == 200
        assert response.json()["total_cases"] == 1
        assert response.json()["top_effective_arguments"] == ["CRG5225 professional fees"]


class TestAuditTrail:
    def test_complaint_create_and_delete_are_recorded(self, client, db) -> None:
        auth = _login()
        created = client.post(
            "/v1/complaints",
            json={"organization_id": str(ORG_ID), "client_reference": "CLIENT-077"},
        ).json()
        client.delete(f"/v1/complaints/{created['id']}")

        actions = [(r["action"], r["resource_id"]) for r in db.tables["audit_logs"]]
        assert actions == [("create", created["id"]), ("delete", created["id"])]
        assert db.tables["audit_logs"][0]["user_id"] == str(auth.user_id)

    def test_cross_organization_access_is_recorded(self, client, db) -> None:
        complaint = _seed_complaint(db, OTHER_ORG_ID)
        _login()

        client.get(f"/v1/complaints/{complaint['id']}")

        (row,) = db.tables["audit_logs"]
        assert row["action"] == "access_denied"
        assert row["resource_id"] == str(OTHER_ORG_ID)

    def test_audit_write_failure_does_not_fail_request(self, client, db) -> None:
        db.failing_tables.add("audit_logs")
        _login()

        response = client.post(
            "/v1/complaints",
            json={"organization_id": str(ORG_ID), "client_reference": "CLIENT-078"},
        )

        assert response.status_code == 201

    def test_audit_endpoints_are_admin_only(self, client, db) -> None:
        _login("user")
        assert client.get("/v1/audit").status_code == 403

        _login("admin")
        client.post(
            "/v1/complaints",
            json={"organization_id": str(ORG_ID), "client_reference": "CLIENT-079"},
        )
        logs = client.get("/v1/audit", params={"category": "data"})
        summary = client.get("/v1/audit/summary")

        assert logs.status_code == 200
        assert logs.json()["count"] == 1
        assert summary.json()["by_action"] == {"create": 1}


class TestAppealsApi:
    def test_grounds_lifecycle(self, client, db) -> None:
        complaint = _seed_complaint(db)
        _login()

        created = client.post(
            "/v1/appeals/grounds",
            json={
                "complaint_id": complaint["id"],
                "ground_type": "reasonable_excuse",
                "statute_reference": "FA 2009 Sch 55 para 23",
                "description": "Hospital admission over the filing deadline",
            },
        )
        ground_id = created.json()["id"]
        updated = client.patch(f"/v1/appeals/grounds/{ground_id}", json={"strength_assessment": "strong"})
        listed = client.get(f"/v1/appeals/grounds/complaint/{complaint['id']}")
        removed = client.delete(f"/v1/appeals/grounds/{ground_id}")

        assert created.status_code == 201
        assert updated.json()["strength_assessment"] == "strong"
        assert updated.json()["description"] == "Hospital admission over the filing deadline"
        assert listed.json()["count"] == 1
        assert removed.status_code == 204
        assert db.tables["appeal_grounds"] == []

    def test_other_organization_ground_is_forbidden(self, client, db) -> None:
        complaint = _seed_complaint(db, OTHER_ORG_ID)
        (ground,) = db.seed(
            "appeal_grounds",
            {"complaint_id": complaint["id"], "ground_type": "proportionality", "description": "x"},
        )
        _login()

        response = client.patch(f"/v1/appeals/grounds/{ground['id']}", json={"description": "y"})

        assert response.status_code == 403
        assert db.tables["appeal_grounds"][0]["description"] == "x"

    def test_unknown_penalty_is_404(self, client, db) -> None:
        _login()

        response = client.patch(
            f"/v1/appeals/penalties/{uuid4()}/status", json={"appeal_status": "filed"}
        )

        assert response.status_code == 404

    def test_penalty_starts_pending_then_files(self, client, db) -> None:
        complaint = _seed_complaint(db)
        _login()

        penalty = client.post(
            "/v1/appeals/penalties",
            json={
                "complaint_id": complaint["id"],
                "penalty_type": "late_filing",
                "penalty_regime": "FA 2009 Sch 55",
                "penalty_amount": 100,
                "appeal_deadline": "2026-04-30",
            },
        ).json()
        filed = client.patch(
            f"/v1/appeals/penalties/{penalty['id']}/status",
            json={"appeal_status": "filed", "appeal_filed_date": "2026-04-02"},
        )

        assert penalty["appeal_status"] == "pending"
        assert penalty["appeal_deadline"] == "2026-04-30"
        assert filed.json()["appeal_status"] == "filed"
        assert filed.json()["appeal_filed_date"] == "2026-04-02"

    def test_precedent_search(self, client, db) -> None:
        db.seed(
            "appeal_precedents",
            {"case_name": "Perrin v HMRC", "penalty_type": "late_filing", "summary": "Reasonable excuse test"},
            {"case_name": "Other", "penalty_type": "late_payment", "summary": "Reasonable excuse and illness"},
        )
        _login()

        response = client.get(
            "/v1/appeals/precedents", params={"query": "excuse", "penalty_type": "late_filing"}
        )

        assert [p["case_name"] for p in response.json()["precedents"]] == ["Perrin v HMRC"]
