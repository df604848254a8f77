"""Provider event ingestion."""

from execrelay.backend.events.classify import classify
from execrelay.backend.events.processor import EventProcessor

__all__ = ["EventProcessor", "classify"]
