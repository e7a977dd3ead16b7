"""
Messaging Inbox

Provider-agnostic ingestion core for a multi-channel inbox:
webhook normalization, delivery dedup, contact/conversation/message
persistence and live update fan-out.
"""

__version__ = "1.0.0"
