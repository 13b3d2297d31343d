"""
Driver side of the protocol: spawn a worker and talk to it.

    client = await WorkerClient.start()
    try:
        await client.load("import asyncio")
        assert await client.run("lambda: 2 + 2") == 4
    finally:
        await client.exit()
"""
import asyncio
import logging
import os
import sys
from typing import Any, Dict, List, Optional

from ghostrun.ghostrun_config import ENV_PREFIX
from ghostrun.ghostrun_datatypes import WorkerError
from ghostrun.ghostrun_serialize import deserialize

logger = logging.getLogger(__name__)

EXIT_SOURCE = "raise SystemExit(0)"
DEFAULT_BUFFER_SIZE = 2048 * 1024


class WorkerClient:
    """Talks to one worker subprocess over its stdin/stdout/stderr pipes.

    The worker numbers RUN commands from zero in the order it receives them,
    so the client mirrors that counter to match responses to requests.
    """

    def __init__(self, process: asyncio.subprocess.Process, response_prefix: str = "RES",
                 sentinel: str = "END", tagged: bool = True):
        self.process = process
        self.response_prefix = response_prefix
        self.sentinel = sentinel
        self.tagged = tagged
        self._next_id = 0
        self._pending: Dict[int, asyncio.Future] = {}
        self._lock = asyncio.Lock()
        self._closed = False
        self._readers = [
            asyncio.ensure_future(self._read_stream(process.stdout, is_error=False)),
            asyncio.ensure_future(self._read_stream(process.stderr, is_error=True)),
        ]

    @classmethod
    async def start(cls, *args: str, command: Optional[List[str]] = None, cwd: Optional[str] = None,
                    env: Optional[Dict[str, str]] = None,
                    buffer_size: int = DEFAULT_BUFFER_SIZE,
                    sentinel: str = "END", response_prefix: str = "RES",
                    tagged: Optional[bool] = None) -> 'WorkerClient':
        """Spawn a worker. `buffer_size` bounds the length of a single response line.

        `sentinel`, `response_prefix` and `tagged` are passed to the worker as
        GHOSTRUN_* environment variables so both ends frame blocks the same way.
        They outrank the worker's config file. `tagged` defaults to False only
        when `--legacy` is among `args`.
        """
        legacy = "--legacy" in args
        if tagged is None:
            tagged = not legacy
        elif tagged and legacy:
            raise ValueError("tagged=True conflicts with --legacy")
        child_env = dict(os.environ if env is None else env)
        child_env.update({
            ENV_PREFIX + "SENTINEL": sentinel,
            ENV_PREFIX + "RESPONSE_PREFIX": response_prefix,
            ENV_PREFIX + "TAGGED": "true" if tagged else "false",
        })
        argv = list(command) if command else [sys.executable, "-m", "ghostrun_worker"]
        argv.extend(args)
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            env=child_env,
            limit=buffer_size,
        )
        return cls(process, response_prefix=response_prefix, sentinel=sentinel, tagged=tagged)

    async def _read_stream(self, stream: asyncio.StreamReader, *, is_error: bool):
        while True:
            try:
                raw = await stream.readuntil(b"\n")
            except asyncio.IncompleteReadError as e:
                raw = e.partial
            except asyncio.LimitOverrunError as e:
                # Line longer than buffer_size: keep its head to see whose it is
                head = await stream.read(e.consumed)
                await self._discard_line(stream)
                self._on_oversized(head)
                continue
            if not raw:
                break
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            if not line:
                continue
            ident = self._response_id(line)
            if ident is not None:
                payload = line.partition(" ")[2]
                self._resolve(ident, deserialize(payload), is_error)
                continue
            logger.debug("LOG %s", line)
        self._on_eof()

    @staticmethod
    async def _discard_line(stream: asyncio.StreamReader):
        while True:
            try:
                await stream.readuntil(b"\n")
                return
            except asyncio.LimitOverrunError as e:
                await stream.read(e.consumed)
            except asyncio.IncompleteReadError:
                return

    def _response_id(self, line: str) -> Optional[int]:
        if not line.startswith(self.response_prefix):
            return None
        ident = line.partition(" ")[0][len(self.response_prefix):]
        return int(ident) if ident.isdigit() else None

    def _on_oversized(self, head: bytes):
        line = head.decode("utf-8", errors="replace")
        ident = self._response_id(line)
        if ident is None:
            # Echoes and log output only matter for diagnostics
            logger.warning("Skipping oversized output line: %.80s...", line)
            return
        logger.error("Response %s%d exceeded the client buffer size", self.response_prefix, ident)
        fut = self._pending.pop(ident, None)
        if fut is not None and not fut.done():
            fut.set_exception(WorkerError(f"{self.response_prefix}{ident}: response exceeded the client buffer size"))

    def _resolve(self, ident: int, value: Any, is_error: bool):
        fut = self._pending.pop(ident, None)
        if fut is None or fut.done():
            logger.warning("Dropping unexpected response %s%d", self.response_prefix, ident)
            return
        if is_error:
            fut.set_exception(WorkerError(f"{self.response_prefix}{ident} failed: {value}", value))
        else:
            fut.set_result(value)

    def _on_eof(self):
        if self._closed:
            return
        self._closed = True
        self._fail_pending("worker is no longer running")

    def _fail_pending(self, message: str):
        for fut in self._pending.values():
            if not fut.done():
                fut.set_exception(WorkerError(message))
        self._pending.clear()

    async def _send(self, *lines: str):
        if self._closed or self.process.stdin is None or self.process.stdin.is_closing():
            raise WorkerError("worker is no longer running")
        data = "".join(line + "\n" for line in lines).encode("utf-8")
        try:
            self.process.stdin.write(data)
            await self.process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise WorkerError(f"Cannot send to worker: {e}") from e

    async def run(self, source: str, timeout: Optional[float] = None) -> Any:
        """Run a function literal and return its decoded result.

        Raises WorkerError carrying the decoded error payload on failure.
        A fragment that fails to parse never answers; pass `timeout` to bound the wait.
        """
        async with self._lock:
            ident = self._next_id
            self._next_id += 1
            fut = asyncio.get_running_loop().create_future()
            self._pending[ident] = fut
            lines = ["RUN", source, self.sentinel] if self.tagged else [source, self.sentinel]
            try:
                await self._send(*lines)
                return await asyncio.wait_for(fut, timeout)
            finally:
                self._pending.pop(ident, None)

    async def load(self, source: str):
        """Execute statements in the worker's namespace (no response)."""
        if not self.tagged:
            raise WorkerError("EVAL is not available in the legacy protocol")
        async with self._lock:
            await self._send("EVAL", source, self.sentinel)

    async def exit(self, timeout: float = 10.0) -> int:
        """Ask the worker to exit and wait for it; kills it if it does not comply.

        Legacy workers cannot EVAL, so they are stopped by closing their input.
        """
        if self.process.returncode is None:
            if self.tagged:
                try:
                    await self.load(EXIT_SOURCE)
                except WorkerError as e:
                    logger.debug("Exit request not delivered: %s", e)
            if self.process.stdin is not None and not self.process.stdin.is_closing():
                self.process.stdin.close()
            try:
                await asyncio.wait_for(self.process.wait(), timeout)
            except asyncio.TimeoutError:
                logger.warning("Worker did not exit within %.1fs; killing it", timeout)
                return await self.kill()
        await asyncio.gather(*self._readers, return_exceptions=True)
        return self.process.returncode

    async def kill(self) -> int:
        if self.process.returncode is None:
            self.process.kill()
        code = await self.process.wait()
        await asyncio.gather(*self._readers, return_exceptions=True)
        return code
