"""
RSS Feed Handler
================

Generic handler for RSS 2.0 and Atom feeds published by regulators.

Feed options are read from the source ``configuration``:

- ``category``: category assigned to every item (default "General")
- ``code_pattern``: regex whose first group extracts a document code
  from the title, e.g. ``"(CONSAR\\s+\\d+-\\d+)"``
- ``max_items``: cap on items taken from the feed (default 50)

Version: 0.1.0
"""

import hashlib
import html
import re
from datetime import date, datetime
from email.utils import parsedate_to_datetime
from typing import TYPE_CHECKING, Any
from xml.etree import ElementTree

from services.normative_scraper.handlers.base import HttpSourceHandler, RawDocument
from services.normative_scraper.models import SourceType
from shared.logging import get_logger

if TYPE_CHECKING:
    from services.normative_scraper.cancellation import CancellationToken
    from services.normative_scraper.models import ScraperSourceModel


logger = get_logger(__name__)

ATOM_NS = "{http://www.w3.org/2005/Atom}"
DEFAULT_MAX_ITEMS = 50


class RssFeedHandler(HttpSourceHandler):
    """Harvests items of an RSS or Atom feed at the source's full URL."""

    def can_handle(self, source_type: SourceType) -> bool:
        return source_type == SourceType.RSS_FEED

    async def harvest(
        self,
        source: "ScraperSourceModel",
        cancel_token: "CancellationToken",
    ) -> list[RawDocument]:
        options: dict[str, Any] = source.configuration or {}
        cancel_token.raise_if_cancelled()

        response = await self._request("GET", source.full_url)
        cancel_token.raise_if_cancelled()

        documents = self.parse_feed(response.text, options)

        logger.info(
            "feed_harvested",
            source=source.name,
            url=source.full_url,
            items=len(documents),
        )

        return documents

    def parse_feed(self, content: str, options: dict[str, Any] | None = None) -> list[RawDocument]:
        """Parse feed XML into raw documents. Items without a title are skipped."""
        options = options or {}
        root = ElementTree.fromstring(content)

        if root.tag == f"{ATOM_NS}feed":
            entries = [self._parse_atom_entry(e) for e in root.iter(f"{ATOM_NS}entry")]
        else:
            entries = [self._parse_rss_item(i) for i in root.iter("item")]

        category = options.get("category") or "General"
        code_pattern = options.get("code_pattern")
        max_items = int(options.get("max_items") or DEFAULT_MAX_ITEMS)

        documents: list[RawDocument] = []
        for entry in entries[:max_items]:
            if not entry["title"]:
                continue

            link = entry["link"]
            documents.append(
                RawDocument(
                    external_id=entry["guid"] or link or self._fallback_id(entry["title"]),
                    title=entry["title"],
                    description=entry["summary"],
                    code=self._extract_code(entry["title"], code_pattern),
                    category=category,
                    publish_date=entry["published"],
                    document_url=link,
                    pdf_url=link if link and link.lower().endswith(".pdf") else None,
                    metadata={"feed_format": entry["format"]},
                )
            )

        return documents

    def _parse_rss_item(self, item: ElementTree.Element) -> dict[str, Any]:
        return {
            "format": "rss",
            "title": self._text(item.find("title")),
            "link": self._text(item.find("link")),
            "guid": self._text(item.find("guid")),
            "summary": self._clean_html(self._text(item.find("description"))),
            "published": self._parse_date(self._text(item.find("pubDate"))),
        }

    def _parse_atom_entry(self, entry: ElementTree.Element) -> dict[str, Any]:
        link_el = entry.find(f"{ATOM_NS}link")
        summary = entry.find(f"{ATOM_NS}summary")
        if summary is None:
            summary = entry.find(f"{ATOM_NS}content")
        published = entry.find(f"{ATOM_NS}published")
        if published is None:
            published = entry.find(f"{ATOM_NS}updated")

        return {
            "format": "atom",
            "title": self._text(entry.find(f"{ATOM_NS}title")),
            "link": link_el.get("href") if link_el is not None else None,
            "guid": self._text(entry.find(f"{ATOM_NS}id")),
            "summary": self._clean_html(self._text(summary)),
            "published": self._parse_date(self._text(published)),
        }

    @staticmethod
    def _text(element: ElementTree.Element | None) -> str | None:
        if element is None or element.text is None:
            return None
        text = element.text.strip()
        return text or None

    @staticmethod
    def _parse_date(value: str | None) -> date | None:
        if not value:
            return None
        try:
            return parsedate_to_datetime(value).date()
        except (TypeError, ValueError):
            pass
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
        except ValueError:
            logger.debug("feed_date_unparsed", value=value)
            return None

    @staticmethod
    def _extract_code(title: str, pattern: str | None) -> str | None:
        if not pattern:
            return None
        match = re.search(pattern, title, re.I)
        if not match:
            return None
        return (match.group(1) if match.groups() else match.group(0)).strip()

    @staticmethod
    def _clean_html(value: str | None) -> str | None:
        if not value:
            return None
        text = re.sub(r"<br\s*/?>", "\n", value, flags=re.I)
        text = re.sub(r"<[^>]+>", "", text)
        text = html.unescape(text)
        text = re.sub(r"[ \t]+", " ", text)
        return text.strip() or None

    @staticmethod
    def _fallback_id(title: str) -> str:
        return hashlib.sha256(title.encode()).hexdigest()[:32]
