# ghostrun_runtime.py

import asyncio
import logging
from pathlib import Path
from typing import Optional, TextIO

from ghostrun.ghostrun_config import WorkerConfig
from ghostrun.ghostrun_datatypes import InputClosed
from ghostrun.ghostrun_dispatcher import Dispatcher, InvocationCounter
from ghostrun.ghostrun_executor import Executor, PythonExecutor
from ghostrun.ghostrun_framer import InputFramer
from ghostrun.ghostrun_parser import CommandParser
from ghostrun.ghostrun_writer import ResponseWriter

logger = logging.getLogger(__name__)


class Scheduler:
    """Single-threaded read -> classify -> dispatch loop.

    Each turn ends by yielding to the event loop before the next ready
    marker, so pending callbacks run and the loop never recurses.
    """

    def __init__(self, framer: InputFramer, parser: CommandParser, dispatcher: Dispatcher,
                 writer: ResponseWriter):
        self.framer = framer
        self.parser = parser
        self.dispatcher = dispatcher
        self.writer = writer
        self.commands_handled = 0

    async def step(self):
        block = await self.framer.read_block()
        command = self.parser.parse(block)
        await self.dispatcher.dispatch(command)
        self.commands_handled += 1
        self.writer.flush()

    async def run(self):
        """Loop until the input stream ends."""
        while True:
            try:
                await self.step()
            except InputClosed as e:
                if e.partial:
                    logger.debug("Input closed with %d unterminated line(s)", len(e.partial))
                return
            await asyncio.sleep(0)


class WorkerRuntime:
    """Wires a config, an executor and the protocol streams into a Scheduler."""

    def __init__(self, config: Optional[WorkerConfig] = None, executor: Optional[Executor] = None,
                 stdin: Optional[TextIO] = None, stdout: Optional[TextIO] = None,
                 stderr: Optional[TextIO] = None):
        self.config = config or WorkerConfig()
        self.executor = executor or PythonExecutor()
        self.writer = ResponseWriter(stdout, stderr)
        self.counter = InvocationCounter()
        self.framer = InputFramer(self.writer, stdin, sentinel=self.config.sentinel,
                                  ready_marker=self.config.ready_marker)
        self.parser = CommandParser(tagged=self.config.tagged)
        self.dispatcher = Dispatcher(self.executor, self.writer, self.counter,
                                     response_prefix=self.config.response_prefix,
                                     new_prefix=self.config.new_prefix,
                                     exactly_once=self.config.exactly_once)
        self.scheduler = Scheduler(self.framer, self.parser, self.dispatcher, self.writer)
        self._initialized = False

    async def _initialize(self):
        """Runs the preload files into the executor once, before the first ready marker."""
        if self._initialized:
            return
        for entry in self.config.preload:
            path = Path(entry)
            source = path.read_text(encoding="utf-8")
            logger.debug("Preloading %s", path)
            result = self.executor.execute(source)
            if asyncio.iscoroutine(result):
                await result
        self._initialized = True

    async def serve(self) -> int:
        """Serve commands until end of input; returns the number handled."""
        await self._initialize()
        await self.scheduler.run()
        return self.scheduler.commands_handled
