"""
Routes classified commands to the executor and reports their outcome.

RUN fragments that take no parameters are called directly and their return
value (or exception) is the response. Fragments that declare parameters are
handed a one-shot completion callback, `done(result=None, error=None)`, and
the dispatcher waits until it is called.
"""
import asyncio
import inspect
import logging
import threading
from typing import Any, Optional

from ghostrun.ghostrun_datatypes import (
    Command, CommandKind, FragmentError, Invocation, InvocationMode, Response
)
from ghostrun.ghostrun_executor import Executor, FunctionValue
from ghostrun.ghostrun_writer import ResponseWriter

logger = logging.getLogger(__name__)

# What a RUN fragment may raise and still get an Err response. SystemExit only
# stops the worker from EVAL; KeyboardInterrupt always propagates.
FRAGMENT_FAILURES = (Exception, asyncio.CancelledError, SystemExit)


class InvocationCounter:
    """Hands out strictly increasing invocation ids for one worker."""

    def __init__(self, start: int = 0):
        self._next = start
        self._lock = threading.Lock()

    def allocate(self) -> int:
        with self._lock:
            value = self._next
            self._next += 1
            return value

    @property
    def issued(self) -> int:
        return self._next


def _is_present(error: Any) -> bool:
    if error is None:
        return False
    try:
        return bool(error)
    except Exception:
        # Objects with ambiguous truth values (arrays and the like) count as errors
        return True


class Completion:
    """The callback handed to a callback-mode fragment.

    Every call writes a response. The first call also resolves `future`,
    which is what lets the scheduler read the next block. With `exactly_once`
    the later calls are dropped instead of written.
    """

    def __init__(self, invocation: Invocation, writer: ResponseWriter,
                 loop: asyncio.AbstractEventLoop, exactly_once: bool = False):
        self.invocation = invocation
        self.writer = writer
        self.loop = loop
        self.exactly_once = exactly_once
        self.future: asyncio.Future = loop.create_future()
        self.calls = 0

    def __call__(self, result: Any = None, error: Any = None):
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self.loop:
            self._deliver(result, error)
        else:
            # Called from a foreign thread; hop onto the worker's loop
            self.loop.call_soon_threadsafe(self._deliver, result, error)

    def _deliver(self, result: Any, error: Any):
        self.calls += 1
        if self.calls > 1:
            if self.exactly_once:
                logger.warning("Ignoring repeated completion #%d for %s", self.calls, self.invocation.tag)
                return
            logger.warning("Completion for %s called %d times", self.invocation.tag, self.calls)
        tag = self.invocation.tag
        if _is_present(error):
            response = Response.err(tag, error)
        else:
            response = Response.ok(tag, result)
        self.writer.emit(response)
        if not self.future.done():
            self.future.set_result(response)

    def fail(self, error: BaseException):
        """Report a failure raised by the fragment itself, unless it already completed."""
        if not self.future.done():
            self._deliver(None, error)


class Dispatcher:
    def __init__(self, executor: Executor, writer: ResponseWriter,
                 counter: Optional[InvocationCounter] = None,
                 response_prefix: str = "RES", new_prefix: str = "NEW",
                 exactly_once: bool = False):
        self.executor = executor
        self.writer = writer
        self.counter = counter if counter is not None else InvocationCounter()
        self.response_prefix = response_prefix
        self.new_prefix = new_prefix
        self.exactly_once = exactly_once
        self._tasks: set = set()

    async def dispatch(self, command: Command) -> Optional[Response]:
        """Handle one command; returns the first response written, if any."""
        match command.kind:
            case CommandKind.RUN:
                return await self.run(command.text)
            case CommandKind.EVAL:
                await self.eval(command.text)
                return None
            case _:
                self.writer.write_line(f"Invalid command:<{command.token}>")
                return None

    async def eval(self, source: str):
        try:
            result = self.executor.execute(source)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            self.writer.write_line(f"EVAL failed: {type(e).__name__}: {e}")

    async def run(self, source: str) -> Optional[Response]:
        ident = self.counter.allocate()
        self.writer.write_line(f"{self.new_prefix}{ident} {source}")
        try:
            func = self.executor.evaluate(source)
        except FragmentError as e:
            # Unparseable fragments get no response at all
            logger.debug("Dropping %s%d: %s", self.response_prefix, ident, e)
            return None

        if func.parameter_count() > 0:
            invocation = Invocation(ident, InvocationMode.CALLBACK, self.response_prefix)
            return await self._run_callback(invocation, func)
        invocation = Invocation(ident, InvocationMode.DIRECT, self.response_prefix)
        return await self._run_direct(invocation, func)

    async def _run_direct(self, invocation: Invocation, func: FunctionValue) -> Response:
        try:
            value = func.invoke()
            if inspect.isawaitable(value):
                value = await value
            response = Response.ok(invocation.tag, value)
        except FRAGMENT_FAILURES as e:
            response = Response.err(invocation.tag, e)
        self.writer.emit(response)
        return response

    async def _run_callback(self, invocation: Invocation, func: FunctionValue) -> Response:
        loop = asyncio.get_running_loop()
        done = Completion(invocation, self.writer, loop, exactly_once=self.exactly_once)
        try:
            pending = func.invoke(done)
        except FRAGMENT_FAILURES as e:
            done.fail(e)
            return await done.future

        if inspect.isawaitable(pending):
            task = asyncio.ensure_future(self._watch(pending, done))
            self._tasks.add(task)
            # Remove as soon as the task completes
            task.add_done_callback(self._tasks.discard)
        # No timeout: a fragment that never calls `done` stalls the worker
        return await done.future

    async def _watch(self, pending, done: Completion):
        # Coroutine fragments report their own failure if they die before `done`
        try:
            await pending
        except FRAGMENT_FAILURES as e:
            done.fail(e)
