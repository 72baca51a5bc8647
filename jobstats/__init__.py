"""
jobstats: storage, dedup and monthly statistics for job postings.
"""

__version__ = "0.3.0"
