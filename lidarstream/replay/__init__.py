"""Capture recording and replay."""

from .capture import CapturePacket, CaptureReader, CaptureWriter, RecordKind
from .controller import CaptureReplay, ReplayState

__all__ = [
    "CapturePacket",
    "CaptureReader",
    "CaptureWriter",
    "CaptureReplay",
    "RecordKind",
    "ReplayState",
]
