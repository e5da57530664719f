"""
Multipart upload session core.

Contains the chunk buffer, the session registry and the orchestrator that
drives a session from creation through completion or abort.
"""

from .buffer import ChunkBuffer
from .orchestrator import BeginResult, ManifestEntry, PartAck, UploadOrchestrator
from .registry import SessionRegistry, SessionState, UploadSession

__all__ = [
    "BeginResult",
    "ChunkBuffer",
    "ManifestEntry",
    "PartAck",
    "SessionRegistry",
    "SessionState",
    "UploadOrchestrator",
    "UploadSession",
]
