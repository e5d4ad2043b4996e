"""
NORMWATCH Services
==================

Services of the Normwatch normative monitoring platform.

Services:
- normative_scraper: Regulatory source harvesting and normative change promotion
"""

__all__ = [
    "normative_scraper",
]
