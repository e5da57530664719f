"""In-process holding area for chunks received by direct-byte backends."""

import logging
import threading
from typing import Dict, Iterator, List, Optional, Tuple

from uploads_api.errors import BufferCapacityError

logger = logging.getLogger(__name__)


class ChunkBuffer:
    """Chunks keyed by ``(session_id, part_number)`` until finalize time.

    Writing a part number that is already buffered replaces its bytes. Slot
    writes for one session are serialized by the caller holding that
    session's lock; the buffer's own lock only guards the byte accounting
    and the session table, so unrelated sessions never wait on each other
    for longer than a dict update.
    """

    def __init__(self, max_bytes: Optional[int] = None):
        self.max_bytes = max_bytes
        self._chunks: Dict[str, Dict[int, bytes]] = {}
        self._total_bytes = 0
        self._lock = threading.Lock()

    @property
    def total_bytes(self) -> int:
        return self._total_bytes

    def put(self, session_id: str, part_number: int, data: bytes) -> None:
        """Store ``data`` for a part, replacing any earlier bytes."""
        with self._lock:
            parts = self._chunks.setdefault(session_id, {})
            previous = parts.get(part_number)
            delta = len(data) - (len(previous) if previous is not None else 0)
            if self.max_bytes is not None and delta > 0 and self._total_bytes + delta > self.max_bytes:
                raise BufferCapacityError(
                    f"Chunk buffer is full ({self._total_bytes} of {self.max_bytes} bytes in use); "
                    f"retry part {part_number} later"
                )
            parts[part_number] = bytes(data)
            self._total_bytes += delta

    def part_size(self, session_id: str, part_number: int) -> int:
        chunk = self._chunks.get(session_id, {}).get(part_number)
        return len(chunk) if chunk is not None else 0

    def session_bytes(self, session_id: str) -> int:
        return sum(len(chunk) for chunk in self._chunks.get(session_id, {}).values())

    def ordered(self, session_id: str, part_numbers: List[int]) -> Iterator[Tuple[int, bytes]]:
        """Yield ``(part_number, bytes)`` in ascending part-number order."""
        parts = self._chunks.get(session_id, {})
        for part_number in sorted(set(part_numbers)):
            yield part_number, parts[part_number]

    def release(self, session_id: str) -> int:
        """Drop every chunk of a session and return the bytes freed."""
        with self._lock:
            parts = self._chunks.pop(session_id, {})
            freed = sum(len(chunk) for chunk in parts.values())
            self._total_bytes -= freed
        if freed:
            logger.debug(f"Released {freed} buffered bytes for session {session_id}")
        return freed

    def __contains__(self, key: Tuple[str, int]) -> bool:
        session_id, part_number = key
        return part_number in self._chunks.get(session_id, {})
