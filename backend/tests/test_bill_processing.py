"""Tests for concurrent document extraction in BillProcessingService."""

import asyncio

import pytest

from app.billing.errors import ValidationError
from app.services.bill_processing import BillDocument, BillProcessingService


OFFICE_VISIT = {"provider_name": "Dr. Smith", "procedure_code": "99213", "billed_amount": 500,
                "service_date": "2024-03-01"}


def _documents(*ids: str) -> list[BillDocument]:
    return [BillDocument(document_id=doc_id, content=doc_id) for doc_id in ids]


class TestProcessCase:
    async def test_union_of_documents_is_analyzed(self):
        async def extractor(document):
            return [dict(OFFICE_VISIT)]

        service = BillProcessingService(extractor, concurrency=2, timeout_seconds=5)
        result = await service.process_case("CASE-7", _documents("doc-a", "doc-b"))

        assert result.failed_documents == []
        assert result.stats.total_documents == 2
        assert result.stats.bills_extracted == 2
        # the same visit extracted from two documents is one duplicate
        assert result.stats.duplicates_found == 1
        assert result.report.summary.total_billed == 1000

    async def test_records_keep_document_order(self):
        delays = {"doc-a": 0.05, "doc-b": 0.0, "doc-c": 0.02}
        seen = []

        async def extractor(document):
            await asyncio.sleep(delays[document.document_id])
            seen.append(document.document_id)
            return [{**OFFICE_VISIT, "item_id": document.document_id,
                     "billed_amount": 100 + len(seen)}]

        service = BillProcessingService(extractor, concurrency=3, timeout_seconds=5)
        result = await service.process_case("CASE-7", _documents("doc-a", "doc-b", "doc-c"))

        assert seen == ["doc-b", "doc-c", "doc-a"]
        assert [r.item_id for r in result.report.rows] == ["doc-a", "doc-b", "doc-c"]

    async def test_failed_document_is_skipped(self):
        async def extractor(document):
            if document.document_id == "bad":
                raise RuntimeError("unreadable scan")
            return [dict(OFFICE_VISIT)]

        service = BillProcessingService(extractor, concurrency=2, timeout_seconds=5)
        result = await service.process_case("CASE-7", _documents("good", "bad"))

        assert result.failed_documents == [{"document_id": "bad", "error": "RuntimeError: unreadable scan"}]
        assert result.stats.documents_failed == 1
        assert result.stats.bills_extracted == 1
        assert result.report.summary.num_bills == 1

    async def test_timeout_is_a_failure(self):
        async def extractor(document):
            if document.document_id == "slow":
                await asyncio.sleep(1)
            return [dict(OFFICE_VISIT)]

        service = BillProcessingService(extractor, concurrency=2, timeout_seconds=0.05)
        result = await service.process_case("CASE-7", _documents("fast", "slow"))

        assert result.failed_documents == [{"document_id": "slow", "error": "timed out after 0.05s"}]
        assert result.stats.bills_extracted == 1

    async def test_concurrency_is_bounded(self):
        active = 0
        peak = 0

        async def extractor(document):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return []

        service = BillProcessingService(extractor, concurrency=2, timeout_seconds=5)
        result = await service.process_case("CASE-7", _documents(*[f"doc-{i}" for i in range(6)]))

        assert peak == 2
        assert result.stats.total_documents == 6
        assert result.report.summary.num_bills == 0

    async def test_result_serializes(self):
        async def extractor(document):
            return [dict(OFFICE_VISIT)]

        service = BillProcessingService(extractor, concurrency=1, timeout_seconds=5)
        result = await service.process_case("CASE-7", _documents("doc-a"))
        data = result.to_dict()
        assert data["stats"]["bills_extracted"] == 1
        assert data["failed_documents"] == []
        assert data["report"]["summary"]["num_bills"] == 1

    async def test_case_id_required(self):
        async def extractor(document):
            return []

        with pytest.raises(ValidationError):
            await BillProcessingService(extractor).process_case("", _documents("doc-a"))
