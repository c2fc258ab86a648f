"""Recommendation core for StoreRec.

This module contains the interaction data sources, the scoring engine with
its collaborative, content-based, trending and hybrid strategies, the
24-hour recommendation cache, and the service façade tying them together.
"""
