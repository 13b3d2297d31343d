"""
Executors turn fragment source text into callable function values.

The worker core only depends on the `Executor` interface. `PythonExecutor`
is the bundled implementation: fragments are Python function literals, either
a lambda expression or a (possibly async) `def` statement.

    lambda: 2 + 1
    lambda done: done(6)

    async def fetch(done):
        ...
"""
import ast
import inspect
from abc import ABC, abstractmethod
from textwrap import dedent
from typing import Any, Dict, Optional

from ghostrun.ghostrun_datatypes import FragmentError


class FunctionValue:
    """A callable produced by an executor, plus the source it came from."""

    def __init__(self, fn: Any, source: str = ""):
        self.fn = fn
        self.source = source

    def parameter_count(self) -> int:
        if not callable(self.fn):
            return 0
        try:
            sig = inspect.signature(self.fn)
        except (TypeError, ValueError):
            # Some builtins carry no signature
            return 0
        return len(sig.parameters)

    def invoke(self, *args) -> Any:
        # Non-callables raise TypeError here, like calling any other value
        return self.fn(*args)

    def __repr__(self) -> str:
        return f"<FunctionValue {self.source!r}>"


class Executor(ABC):
    """The capability the dispatcher evaluates fragments through."""

    @abstractmethod
    def evaluate(self, source: str) -> FunctionValue:
        """Return a function value for `source`; raise FragmentError if impossible."""
        raise NotImplementedError

    @abstractmethod
    def execute(self, source: str) -> Any:
        """Run `source` as statements in the host context.

        May return an awaitable, which the caller awaits.
        """
        raise NotImplementedError


class PythonExecutor(Executor):
    """Evaluates Python fragments against one persistent globals namespace."""

    def __init__(self, namespace: Optional[Dict[str, Any]] = None):
        self.namespace = namespace if namespace is not None else {"__name__": "__ghostrun__"}

    def evaluate(self, source: str) -> FunctionValue:
        text = dedent(source).strip()
        if not text:
            raise FragmentError("empty fragment", source)
        try:
            code = compile(text, "<run>", "eval")
        except SyntaxError:
            return self._evaluate_definition(text, source)
        try:
            value = eval(code, self.namespace)
        except Exception as e:
            raise FragmentError(f"{type(e).__name__}: {e}", source) from e
        return FunctionValue(value, source)

    def _evaluate_definition(self, text: str, source: str) -> FunctionValue:
        try:
            tree = ast.parse(text, "<run>", "exec")
        except SyntaxError as e:
            raise FragmentError(f"SyntaxError: {e}", source) from e
        last = tree.body[-1] if tree.body else None
        if not isinstance(last, (ast.FunctionDef, ast.AsyncFunctionDef)):
            raise FragmentError("fragment is not a function literal", source)
        # The definition binds its name in the shared namespace, like EVAL would
        try:
            exec(compile(tree, "<run>", "exec"), self.namespace)
        except Exception as e:
            raise FragmentError(f"{type(e).__name__}: {e}", source) from e
        return FunctionValue(self.namespace[last.name], source)

    def execute(self, source: str) -> Any:
        text = dedent(source)
        code = compile(text, "<eval>", "exec", flags=ast.PyCF_ALLOW_TOP_LEVEL_AWAIT)
        # Returns a coroutine when the statements use top-level await
        return eval(code, self.namespace)
