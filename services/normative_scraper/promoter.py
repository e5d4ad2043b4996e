"""
Batch Promoter
==============

Turns harvested documents into normative change records.

Promotion is document-granular: each document is promoted in its own
unit of work, so a cancelled or failing batch never rolls back documents
already promoted. The change code is the dedup boundary: a document whose
code is already used by a change record is ignored, never promoted twice.

Version: 0.1.0
"""

import asyncio
import unicodedata
import uuid
from dataclasses import dataclass, field

from services.normative_scraper.cancellation import CancellationToken
from services.normative_scraper.exceptions import DuplicateChangeCodeError
from services.normative_scraper.models import (
    DocumentStatus,
    NormativePriority,
    ScrapedDocumentModel,
)
from services.normative_scraper.store import DocumentStore
from shared.logging import get_logger


logger = get_logger(__name__)

BATCH_ACTOR = "system-batch"

# Keywords are matched against lowercased, accent-folded text
HIGH_PRIORITY_KEYWORDS = ("urgente", "inmediata", "obligatorio", "sancion", "multa")
LOW_PRIORITY_KEYWORDS = ("informativo", "aclaracion", "fe de erratas")

VALIDATOR_KEYWORDS: list[tuple[tuple[str, ...], tuple[str, ...]]] = [
    (("nomina",), ("NOMINA",)),
    (("contable",), ("CONTABLE",)),
    (("regularizacion",), ("REGULARIZACION",)),
    (("siefore", "inversion"), ("V21", "V22", "V23")),
    (("formato", "anexo"), ("V01", "V02", "V03")),
]


def fold_text(*parts: str | None) -> str:
    """Lowercase and strip diacritics so "Sanción" matches "sancion"."""
    text = " ".join(p for p in parts if p).lower()
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def determine_priority(title: str, description: str | None = None) -> NormativePriority:
    """Urgent or sanction language is HIGH, informational or erratum language is LOW."""
    text = fold_text(title, description)

    if any(keyword in text for keyword in HIGH_PRIORITY_KEYWORDS):
        return NormativePriority.HIGH
    if any(keyword in text for keyword in LOW_PRIORITY_KEYWORDS):
        return NormativePriority.LOW
    return NormativePriority.MEDIUM


def determine_affected_validators(
    title: str,
    description: str | None = None,
    category: str | None = None,
) -> list[str] | None:
    """Validator tags suggested by the document's wording, or None if no keyword matches."""
    text = fold_text(title, description, category)

    tags: list[str] = []
    for keywords, validators in VALIDATOR_KEYWORDS:
        if any(keyword in text for keyword in keywords):
            tags.extend(v for v in validators if v not in tags)

    return tags or None


@dataclass
class PromotionResult:
    """Outcome of promoting a single document."""

    document_id: uuid.UUID
    success: bool
    status: DocumentStatus | None
    normative_change_id: uuid.UUID | None = None
    error_message: str | None = None


@dataclass
class PromotionBatchResult:
    """Aggregated outcome of a batch promotion."""

    total_processed: int = 0
    success_count: int = 0
    ignored_count: int = 0
    error_count: int = 0
    cancelled: bool = False
    results: list[PromotionResult] = field(default_factory=list)

    def add(self, result: PromotionResult) -> None:
        self.results.append(result)
        self.total_processed += 1

        if result.success:
            self.success_count += 1
        elif result.status == DocumentStatus.IGNORED:
            self.ignored_count += 1
        else:
            self.error_count += 1


class BatchPromoter:
    """Promotes harvested documents into normative change records."""

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    async def promote_document(
        self,
        document_id: uuid.UUID,
        actor: str,
        priority: NormativePriority = NormativePriority.MEDIUM,
        affected_validators: list[str] | None = None,
    ) -> PromotionResult:
        """
        Promote one document.

        Args:
            document_id: Harvested document to promote
            actor: Recorded as the processor and change creator
            priority: Priority of the change record
            affected_validators: Validator tags of the change record

        Returns:
            Promotion result; non-success results carry the document status
        """
        document = await self.store.get_document(document_id)

        if document is None:
            return PromotionResult(
                document_id=document_id,
                success=False,
                status=None,
                error_message="Document not found",
            )

        if not document.is_promotable:
            return PromotionResult(
                document_id=document_id,
                success=False,
                status=document.status,
                error_message=f"Document already processed with status: {document.status.value}",
            )

        code = document.change_code

        try:
            existing = await self.store.find_change_by_code(code)
            if existing is not None:
                return await self._ignore_duplicate(document, code)

            change = document.to_normative_change(
                priority=priority,
                affected_validators=affected_validators,
                created_by=actor,
            )
            document.mark_processed(change.id, actor)

            await self.store.save(change, document)

        except DuplicateChangeCodeError:
            # Another promotion took the code between the lookup and the save
            return await self._ignore_duplicate(document, code)

        except Exception as e:
            document.mark_error(str(e))
            await asyncio.shield(self.store.save(document))

            logger.error(
                "document_promotion_failed",
                document_id=str(document_id),
                error=str(e),
            )

            return PromotionResult(
                document_id=document_id,
                success=False,
                status=DocumentStatus.ERROR,
                error_message=str(e),
            )

        logger.info(
            "document_promoted",
            document_id=str(document_id),
            normative_change_id=str(change.id),
            code=change.code,
            priority=priority.value,
        )

        return PromotionResult(
            document_id=document_id,
            success=True,
            status=DocumentStatus.PROCESSED,
            normative_change_id=change.id,
        )

    async def _ignore_duplicate(self, document: ScrapedDocumentModel, code: str) -> PromotionResult:
        document.mark_ignored(f"NormativeChange already exists with code: {code}")
        await asyncio.shield(self.store.save(document))

        logger.info("document_promotion_ignored", document_id=str(document.id), code=code)

        return PromotionResult(
            document_id=document.id,
            success=False,
            status=DocumentStatus.IGNORED,
            error_message=f"Duplicate: NormativeChange already exists with code {code}",
        )

    async def promote_all_pending(
        self,
        execution_id: uuid.UUID | None = None,
        auto_priority: bool = True,
        cancel_token: CancellationToken | None = None,
    ) -> PromotionBatchResult:
        """
        Promote every NEW document, optionally only those of one execution.

        Cancellation is checked between documents; the partial result is
        returned with ``cancelled`` set.
        """
        pending = await self.store.list_pending_documents(execution_id)
        batch = PromotionBatchResult()

        logger.info(
            "batch_promotion_started",
            pending=len(pending),
            execution_id=str(execution_id) if execution_id else None,
        )

        for document in pending:
            if cancel_token is not None and cancel_token.cancelled:
                batch.cancelled = True
                logger.info(
                    "batch_promotion_cancelled",
                    processed=batch.total_processed,
                    remaining=len(pending) - batch.total_processed,
                )
                break

            if auto_priority:
                priority = determine_priority(document.title, document.description)
            else:
                priority = NormativePriority.MEDIUM
            validators = determine_affected_validators(
                document.title,
                document.description,
                document.category,
            )

            batch.add(
                await self.promote_document(document.id, BATCH_ACTOR, priority, validators)
            )

        logger.info(
            "batch_promotion_completed",
            total=batch.total_processed,
            success=batch.success_count,
            ignored=batch.ignored_count,
            errors=batch.error_count,
        )

        return batch
