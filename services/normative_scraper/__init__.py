"""
Normative Scraper Service
=========================

Harvests regulatory sources into deduplicated documents and promotes
them into normative change records.

Features:
- Execution orchestration with cooperative cancellation
- Harvest-time deduplication on (source, external id)
- Keyword-driven batch promotion
- Real-time progress notifications
- Scheduled harvesting and promotion jobs

Version: 0.1.0
"""

__version__ = "0.1.0"
