import asyncio
import io
import threading
import pytest

from ghostrun.ghostrun_datatypes import Command, CommandKind, Invocation, InvocationMode, Response
from ghostrun.ghostrun_dispatcher import Completion, Dispatcher, InvocationCounter
from ghostrun.ghostrun_executor import PythonExecutor
from ghostrun.ghostrun_writer import ResponseWriter


def make_dispatcher(**kwargs):
    out, err = io.StringIO(), io.StringIO()
    d = Dispatcher(PythonExecutor(), ResponseWriter(out, err), **kwargs)
    return d, out, err


def test_counter_strictly_increases():
    c = InvocationCounter()
    assert [c.allocate() for _ in range(4)] == [0, 1, 2, 3]
    assert c.issued == 4


def test_counter_is_thread_safe():
    c = InvocationCounter(start=10)
    seen = []
    lock = threading.Lock()

    def grab():
        for _ in range(100):
            v = c.allocate()
            with lock:
                seen.append(v)

    threads = [threading.Thread(target=grab) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert sorted(seen) == list(range(10, 410))


@pytest.mark.asyncio
async def test_run_returns_the_response():
    d, out, _ = make_dispatcher()
    resp = await d.dispatch(Command(CommandKind.RUN, ("lambda: [1, 2]",)))
    assert resp == Response.ok("RES0", [1, 2])
    assert out.getvalue() == "NEW0 lambda: [1, 2]\nRES0 [1,2]\n\n"


@pytest.mark.asyncio
async def test_eval_and_invalid_return_nothing():
    d, out, _ = make_dispatcher()
    assert await d.dispatch(Command(CommandKind.EVAL, ("x = 1",))) is None
    assert await d.dispatch(Command(CommandKind.INVALID, token="NOPE")) is None
    assert out.getvalue() == "Invalid command:<NOPE>\n"
    assert d.counter.issued == 0


@pytest.mark.asyncio
async def test_shared_counter_and_prefixes():
    counter = InvocationCounter(start=7)
    d, out, err = make_dispatcher(counter=counter, response_prefix="R", new_prefix="N")
    resp = await d.run("lambda: 1 / 0")
    assert resp.tag == "R7"
    assert resp.is_error
    assert isinstance(resp.value, ZeroDivisionError)
    assert out.getvalue().startswith("N7 lambda: 1 / 0\n")
    assert err.getvalue().startswith("R7 ")


@pytest.mark.asyncio
async def test_parse_failure_returns_none():
    d, out, err = make_dispatcher()
    assert await d.run("lambda: )") is None
    assert out.getvalue() == "NEW0 lambda: )\n"
    assert err.getvalue() == ""
    assert d.counter.issued == 1


@pytest.mark.asyncio
async def test_completion_treats_empty_errors_as_absent():
    loop = asyncio.get_running_loop()
    out, err = io.StringIO(), io.StringIO()
    inv = Invocation(0, InvocationMode.CALLBACK)
    done = Completion(inv, ResponseWriter(out, err), loop)
    done("value", "")
    assert out.getvalue() == 'RES0 "value"\n\n'
    assert err.getvalue() == ""
    assert (await done.future) == Response.ok("RES0", "value")


@pytest.mark.asyncio
async def test_completion_counts_calls():
    loop = asyncio.get_running_loop()
    out, err = io.StringIO(), io.StringIO()
    done = Completion(Invocation(2, InvocationMode.CALLBACK), ResponseWriter(out, err), loop)
    done(None, "first")
    done("second")
    assert done.calls == 2
    assert (await done.future).value == "first"
    assert err.getvalue() == 'RES2 "first"\n\n'
    assert out.getvalue() == 'RES2 "second"\n\n'


@pytest.mark.asyncio
async def test_completion_fail_after_success_is_ignored():
    loop = asyncio.get_running_loop()
    out, err = io.StringIO(), io.StringIO()
    done = Completion(Invocation(0, InvocationMode.CALLBACK), ResponseWriter(out, err), loop)
    done(1)
    done.fail(RuntimeError("too late"))
    assert done.calls == 1
    assert err.getvalue() == ""


@pytest.mark.asyncio
async def test_completion_from_thread_is_marshalled_to_loop():
    loop = asyncio.get_running_loop()
    out, err = io.StringIO(), io.StringIO()
    done = Completion(Invocation(0, InvocationMode.CALLBACK), ResponseWriter(out, err), loop)
    seen = []

    def worker():
        seen.append(threading.current_thread().name)
        done(99)

    t = threading.Thread(target=worker, name="producer")
    t.start()
    resp = await asyncio.wait_for(done.future, 5)
    t.join()
    assert resp == Response.ok("RES0", 99)
    assert seen == ["producer"]
