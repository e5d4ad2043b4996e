"""
Configured Catalog Handler
==========================

Serves reference records declared directly on a CUSTOM source, for
publishers with no machine-readable index. Records live under
``configuration["documents"]``:

    {
        "documents": [
            {"external_id": "CIRC-19-8", "title": "...", "code": "CONSAR 19-8",
             "publish_date": "2024-01-15", "pdf_url": "https://..."}
        ]
    }

Version: 0.1.0
"""

from datetime import date
from typing import TYPE_CHECKING, Any

from services.normative_scraper.handlers.base import RawDocument, SourceHandler
from services.normative_scraper.models import SourceType

if TYPE_CHECKING:
    from services.normative_scraper.cancellation import CancellationToken
    from services.normative_scraper.models import ScraperSourceModel


class ConfiguredCatalogHandler(SourceHandler):
    def can_handle(self, source_type: SourceType) -> bool:
        return source_type == SourceType.CUSTOM

    async def harvest(
        self,
        source: "ScraperSourceModel",
        cancel_token: "CancellationToken",
    ) -> list[RawDocument]:
        records: list[dict[str, Any]] = (source.configuration or {}).get("documents", [])

        documents = []
        for record in records:
            cancel_token.raise_if_cancelled()
            documents.append(self._to_raw(record))
        return documents

    @staticmethod
    def _to_raw(record: dict[str, Any]) -> RawDocument:
        # Blank ids and titles pass through; the orchestrator rejects them per document
        return RawDocument(
            external_id=str(record.get("external_id") or ""),
            title=str(record.get("title") or ""),
            description=record.get("description"),
            code=record.get("code"),
            category=record.get("category"),
            publish_date=_as_date(record.get("publish_date")),
            effective_date=_as_date(record.get("effective_date")),
            document_url=record.get("document_url"),
            pdf_url=record.get("pdf_url"),
            metadata=dict(record.get("metadata") or {}),
        )


def _as_date(value: Any) -> date | None:
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(str(value))
