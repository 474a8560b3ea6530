"""Repositories over the progress database."""

from .progress_records import ProgressRecordRepository, progress_records

__all__ = ["ProgressRecordRepository", "progress_records"]
