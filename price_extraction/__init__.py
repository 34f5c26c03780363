"""
price_extraction — Daily price bulletin to structured records

Downloads the published PDF price bulletin, rebuilds its market and
commodity tables from the extracted text, and keeps every run in an
append-only report log served over a small HTTP API.
"""

__version__ = "1.0.0"
__author__ = "PriceExtraction"
