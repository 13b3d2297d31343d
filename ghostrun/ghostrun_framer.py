"""
Collects sentinel-terminated blocks of lines from the driver's input stream.
"""
import asyncio
import sys
from typing import List, Optional, TextIO

from ghostrun.ghostrun_datatypes import InputClosed


# A basic awaitable line reader; blocking reads happen off the event loop.
async def areadline(stream: TextIO) -> str:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, stream.readline)


class InputFramer:
    """Reads lines until the sentinel and hands back the block in between."""

    def __init__(self, writer, stream: Optional[TextIO] = None, sentinel: str = "END",
                 ready_marker: str = "[WAITING]"):
        self.writer = writer
        self.stream = stream if stream is not None else sys.stdin
        self.sentinel = sentinel
        self.ready_marker = ready_marker
        self._lines: List[str] = []

    async def read_block(self) -> List[str]:
        """Announce readiness, then read up to (not including) the sentinel line.

        Raises InputClosed when the stream ends, even in the middle of a block.
        """
        self.writer.write_line(self.ready_marker)
        while True:
            raw = await areadline(self.stream)
            if raw == "":
                partial, self._lines = self._lines, []
                raise InputClosed(partial)
            line = raw.rstrip("\r\n")
            if line == self.sentinel:
                block, self._lines = self._lines, []
                return block
            self._lines.append(line)
