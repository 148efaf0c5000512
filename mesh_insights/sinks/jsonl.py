"""
JSONL file sink.

Appends one JSON object per event to a local file. Intended for development
and for hosts that ship the file with an external log forwarder.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Sequence, Union

import aiofiles

from mesh_insights.sinks.base import DeliveryError, Sink
from mesh_insights.telemetry.events import Event

logger = logging.getLogger(__name__)


class JsonlFileSink(Sink):
    """Append-only JSONL writer."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path).expanduser()

    async def deliver(self, batch: Sequence[Event]) -> None:
        if not batch:
            return

        lines = "".join(
            json.dumps(event.to_dict(), ensure_ascii=False, default=str) + "\n"
            for event in batch
        )

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(self.path, "a") as f:
                await f.write(lines)
        except OSError as e:
            raise DeliveryError(
                f"Failed to write {len(batch)} events to {self.path}: {e}",
                batch_size=len(batch),
                cause=e,
            ) from e

        logger.debug(f"[JsonlSink] Appended {len(batch)} events to {self.path.name}")
