"""
callsight — call-event ingestion, transcript analytics and pre-call briefings.
"""

__version__ = "1.0.0"
