"""Sensor readings: the window store and the ingestion boundary."""

from grainwatch.readings.ingest import EmcLookup, ReadingIngestor
from grainwatch.readings.window import ReadingWindowStore

__all__ = ["EmcLookup", "ReadingIngestor", "ReadingWindowStore"]
