"""
Bill Processing Service

Upstream stage of a case analysis: runs the injected per-document extractor
(OCR / LLM calls, I/O bound) concurrently, bounded by a semaphore, with a
timeout per document. A document that fails or times out is logged and
skipped; the engine then runs once over everything that was extracted.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from app.billing.errors import ValidationError
from app.billing.models import BillingReport
from app.billing.summary import analyze_line_items
from app.config import settings
from app.middleware.metrics import bill_documents_processed_total
from app.middleware.request_context import case_context

logger = logging.getLogger(__name__)


@dataclass
class BillDocument:
    document_id: str
    content: Any = None


Extractor = Callable[[BillDocument], Awaitable[list[dict]]]


@dataclass
class ProcessingStats:
    total_documents: int = 0
    documents_failed: int = 0
    bills_extracted: int = 0
    duplicates_found: int = 0
    overcharges_found: int = 0
    processing_time: float = 0.0

    def to_dict(self) -> dict:
        return {
            "total_documents": self.total_documents,
            "documents_failed": self.documents_failed,
            "bills_extracted": self.bills_extracted,
            "duplicates_found": self.duplicates_found,
            "overcharges_found": self.overcharges_found,
            "processing_time": round(self.processing_time, 3),
        }


@dataclass
class ProcessingResult:
    report: BillingReport
    stats: ProcessingStats
    failed_documents: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "report": self.report.to_dict(),
            "stats": self.stats.to_dict(),
            "failed_documents": self.failed_documents,
        }


class BillProcessingService:
    """Extracts bills from a case's documents and analyzes the union."""

    def __init__(
        self,
        extractor: Extractor,
        concurrency: int | None = None,
        timeout_seconds: float | None = None,
    ):
        self.extractor = extractor
        self.concurrency = concurrency or settings.extraction_concurrency
        self.timeout_seconds = timeout_seconds or settings.extraction_timeout_seconds

    async def _extract(self, document: BillDocument, semaphore: asyncio.Semaphore) -> list[dict]:
        async with semaphore:
            return await asyncio.wait_for(self.extractor(document), timeout=self.timeout_seconds)

    async def process_case(self, case_id: str, documents: list[BillDocument]) -> ProcessingResult:
        if not case_id:
            raise ValidationError("case_id is required")

        start = time.perf_counter()
        semaphore = asyncio.Semaphore(self.concurrency)

        with case_context(case_id):
            outcomes = await asyncio.gather(
                *(self._extract(doc, semaphore) for doc in documents),
                return_exceptions=True,
            )

            # Document order, not completion order, so item indexes are stable
            records: list[dict] = []
            failed: list[dict] = []
            for document, outcome in zip(documents, outcomes):
                if isinstance(outcome, BaseException):
                    if isinstance(outcome, asyncio.TimeoutError):
                        reason = f"timed out after {self.timeout_seconds}s"
                    else:
                        reason = f"{type(outcome).__name__}: {outcome}"
                    logger.warning(
                        "Case %s: skipping document %s, extraction failed (%s)",
                        case_id, document.document_id, reason,
                    )
                    failed.append({"document_id": document.document_id, "error": reason})
                    bill_documents_processed_total.labels(status="failed").inc()
                    continue
                bill_documents_processed_total.labels(status="ok").inc()
                for record in outcome:
                    records.append({**record, "document_id": document.document_id})

            report = analyze_line_items(case_id, records)

        stats = ProcessingStats(
            total_documents=len(documents),
            documents_failed=len(failed),
            bills_extracted=len(records),
            duplicates_found=len(report.matches),
            overcharges_found=len(report.summary.overcharges),
            processing_time=time.perf_counter() - start,
        )
        logger.info(
            "Case %s: processed %d documents (%d failed), %d bills extracted",
            case_id, stats.total_documents, stats.documents_failed, stats.bills_extracted,
        )
        return ProcessingResult(report=report, stats=stats, failed_documents=failed)
