"""Tests for manual crawling, chunk upserts and the staging review flow."""

from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest

from app.core.manual_chunking import ManualSection, get_manual_config
from app.core.schemas_knowledge import (
    ComparisonAction,
    ComparisonRecommendation,
    KnowledgeComparison,
)
from app.services import knowledge_ingestion
from app.services.knowledge_ingestion import (
    approve_staged,
    extract_section_urls,
    ingest_all_manuals,
    ingest_manual,
    parse_section_html,
    reject_staged,
    upload_for_comparison,
)

DMBM = get_manual_config("DMBM")
BASE = "/hmrc-internal-manuals/debt-management-and-banking"

INDEX_HTML = f"""
<html><body>
  <a href="{BASE}">Contents</a>
  <a href="{BASE}/dmbm100000">DMBM100000</a>
  <a href="{BASE}/dmbm200000">DMBM200000</a>
  <a href="{BASE}/dmbm200000">DMBM200000 again</a>
  <a href="{BASE}/dmbm100000#part">Anchor</a>
  <a href="/hmrc-internal-manuals/compliance-handbook/ch10000">Other manual</a>
  <a href="/guidance/something">Not a manual</a>
</body></html>
"""

SECTION_HTML = f"""
<html><body>
  <ol>
    <li class="gem-c-breadcrumbs__list-item">Home</li>
    <li class="gem-c-breadcrumbs__list-item">HMRC internal manuals</li>
    <li class="gem-c-breadcrumbs__list-item">Debt Management and Banking Manual</li>
  </ol>
  <a class="govuk-back-link" href="{BASE}/dmbm200000">Back</a>
  <main>
    <h1>DMBM210105 - Time to pay: overview</h1>
    <div class="gem-c-govspeak">
      <nav>Skip this navigation</nav>
      <p>Time to pay arrangements let a customer   settle a debt in instalments.</p>
      <p>See <a href="{BASE}/dmbm210110">DMBM210110</a> for affordability checks.</p>
    </div>
  </main>
</body></html>
"""


class TestExtractSectionUrls:
    def test_keeps_unique_section_links_of_this_manual(self) -> None:
        urls = extract_section_urls(INDEX_HTML, DMBM)

        assert urls == [
            f"https://www.gov.uk{BASE}/dmbm100000",
            f"https://www.gov.uk{BASE}/dmbm200000",
        ]


class TestParseSectionHtml:
    def test_parses_title_breadcrumb_links_and_content(self) -> None:
        url = f"https://www.gov.uk{BASE}/dmbm210105"
        section = parse_section_html(SECTION_HTML, url, DMBM)

        assert section is not None
        assert section.section_reference == "DMBM210105"
        assert section.title == "Time to pay: overview"
        assert section.breadcrumb == ["Debt Management and Banking Manual"]
        assert section.parent_section == "DMBM200000"
        assert section.internal_links == ["DMBM200000", "DMBM210110"]
        assert "settle a debt in instalments" in section.content
        assert "Skip this navigation" not in section.content

    def test_section_from_another_manual_is_skipped(self) -> None:
        url = "https://www.gov.uk/hmrc-internal-manuals/compliance-handbook/ch10000"
        assert parse_section_html(SECTION_HTML, url, DMBM) is None

    def test_page_without_content_is_skipped(self) -> None:
        html = "<html><body><h1>DMBM1</h1><main><p>Short.</p></main></body></html>"
        assert parse_section_html(html, f"https://www.gov.uk{BASE}/dmbm1", DMBM) is None


def _section(content: str) -> ManualSection:
    return ManualSection(
        section_reference="DMBM210105",
        title="Time to pay: overview",
        content=content,
        source_url=f"https://www.gov.uk{BASE}/dmbm210105",
    )


def _fake_embed_texts(texts, *args, **kwargs):
    return [[0.1, 0.2] for _ in texts]


class TestIngestManual:
    @pytest.mark.asyncio
    async def test_second_run_reports_unchanged_then_updated(self, db) -> None:
        content = "Time to pay arrangements let a customer settle a debt in instalments. " * 3

        with (
            patch.object(
                knowledge_ingestion, "crawl_manual", new=AsyncMock(return_value=([_section(content)], []))
            ),
            patch.object(knowledge_ingestion, "embed_texts", side_effect=_fake_embed_texts),
        ):
            first = await ingest_manual(DMBM)
            second = await ingest_manual(DMBM)

        assert first["added"] == first["chunks_created"] >= 1
        assert second["added"] == 0
        assert second["unchanged"] == first["chunks_created"]
        assert len(db.tables["knowledge_base"]) == first["chunks_created"]
        row = db.tables["knowledge_base"][0]
        assert row["manual_code"] == "DMBM"
        assert row["source"] == "HMRC DMBM"
        assert [log["status"] for log in db.tables["knowledge_ingestion_log"]] == [
            "completed",
            "completed",
        ]

        changed = "Time to pay arrangements were revised in 2025 for all customers. " * 3
        with (
            patch.object(
                knowledge_ingestion, "crawl_manual", new=AsyncMock(return_value=([_section(changed)], []))
            ),
            patch.object(knowledge_ingestion, "embed_texts", side_effect=_fake_embed_texts),
        ):
            third = await ingest_manual(DMBM)

        assert third["updated"] >= 1
        assert "revised in 2025" in db.tables["knowledge_base"][0]["content"]

    @pytest.mark.asyncio
    async def test_failed_upserts_are_reported_as_errors(self, db) -> None:
        db.failing_tables.add("knowledge_base")
        content = "Time to pay arrangements let a customer settle a debt in instalments. " * 3

        with (
            patch.object(
                knowledge_ingestion, "crawl_manual", new=AsyncMock(return_value=([_section(content)], []))
            ),
            patch.object(knowledge_ingestion, "embed_texts", side_effect=_fake_embed_texts),
        ):
            summary = await ingest_manual(DMBM)

        assert summary["added"] == 0
        assert summary["errors"]
        assert db.tables["knowledge_ingestion_log"][0]["status"] == "partial"


@pytest.mark.asyncio
async def test_ingest_all_manuals_rejects_unknown_codes() -> None:
    with pytest.raises(ValueError, match="XYZ"):
        await ingest_all_manuals(["DMBM", "XYZ"])


@pytest.mark.asyncio
async def test_ingest_all_manuals_limits_to_requested_codes() -> None:
    with patch.object(
        knowledge_ingestion, "ingest_manual", new=AsyncMock(side_effect=lambda c: {"manual_code": c.code})
    ):
        summaries = await ingest_all_manuals(["ARTG", "DMBM"])

    assert sorted(s["manual_code"] for s in summaries) == ["ARTG", "DMBM"]


# ============================================================================
# Staging
# ============================================================================


def _comparison() -> KnowledgeComparison:
    return KnowledgeComparison(
        recommendations=ComparisonRecommendation(
            action=ComparisonAction.ADD,
            confidence=0.8,
            reason="New guidance",
            suggested_category="CRG",
            suggested_title="Complaint handling update",
        )
    )


class TestStagingFlow:
    @pytest.mark.asyncio
    async def test_upload_stages_document_with_comparison(self, db) -> None:
        similar = [{"id": "kb-1", "title": "CRG4025", "similarity": 0.95}]
        with (
            patch.object(knowledge_ingestion, "search_knowledge_base", new=AsyncMock(return_value=similar)),
            patch.object(
                knowledge_ingestion, "compare_document_to_knowledge_base", return_value=_comparison()
            ) as mock_compare,
        ):
            result = await upload_for_comparison(
                "update.txt", "text/plain", b"New complaint handling guidance.", uploaded_by=uuid4()
            )

        staged = result["staged"]
        assert staged["status"] == "pending"
        assert staged["title"] == "Complaint handling update"
        assert staged["category"] == "CRG"
        assert staged["comparison_result"]["recommendations"]["action"] == "add"
        # The >0.9 match is passed on as a duplicate
        assert mock_compare.call_args.args[2] == similar

    @pytest.mark.asyncio
    async def test_upload_without_text_is_rejected(self, db) -> None:
        with pytest.raises(ValueError, match="No text"):
            await upload_for_comparison("empty.txt", "text/plain", b"   ")

    def test_approve_adds_entry_and_marks_approved(self, db) -> None:
        (staged,) = db.seed(
            "kb_staging",
            {"title": "Draft", "content": "Guidance body", "category": "CRG", "status": "pending"},
        )
        reviewer = uuid4()

        with patch.object(knowledge_ingestion, "embed_text", return_value=[0.3, 0.4]):
            entry = approve_staged(staged["id"], reviewer, title="Final title")

        assert entry["title"] == "Final title"
        assert entry["category"] == "CRG"
        assert entry["metadata"] == {"staged_id": staged["id"]}
        review = db.tables["kb_staging"][0]
        assert review["status"] == "approved"
        assert review["reviewed_by"] == str(reviewer)

    def test_reject_records_notes(self, db) -> None:
        (staged,) = db.seed("kb_staging", {"title": "Draft", "content": "x", "status": "pending"})

        result = reject_staged(staged["id"], None, "Duplicate of CRG4025")

        assert result["status"] == "rejected"
        assert result["review_notes"] == "Duplicate of CRG4025"
        assert "knowledge_base" not in db.tables

    def test_already_reviewed_document_cannot_be_reviewed_again(self, db) -> None:
        (staged,) = db.seed("kb_staging", {"title": "Draft", "content": "x", "status": "rejected"})

        with pytest.raises(ValueError, match="already rejected"):
            approve_staged(staged["id"])

    def test_missing_document_raises_lookup_error(self, db) -> None:
        with pytest.raises(LookupError):
            reject_staged(uuid4())
