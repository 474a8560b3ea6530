"""Learner progress sync and unit unlock evaluation."""

from .engine import ProgressEngine, build_engine
from .models import CompletionPayload, SubUnitKind, UnitStatus

__all__ = ["CompletionPayload", "ProgressEngine", "SubUnitKind", "UnitStatus", "build_engine"]
