"""
Interchangeable enrichment backends: YouTube Data API, page scraping and
LLM extraction.
"""
