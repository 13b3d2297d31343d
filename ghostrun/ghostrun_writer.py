import sys
from typing import Optional, TextIO

from ghostrun.ghostrun_datatypes import Response
from ghostrun.ghostrun_serialize import serialize


class ResponseWriter:
    """Writes protocol lines; successes go to `out`, failures to `err`."""

    def __init__(self, out: Optional[TextIO] = None, err: Optional[TextIO] = None):
        self.out = out if out is not None else sys.stdout
        self.err = err if err is not None else sys.stderr

    def write_line(self, text: str, *, stream: Optional[TextIO] = None):
        s = stream if stream is not None else self.out
        s.write(text + "\n")
        s.flush()

    def format(self, response: Response) -> str:
        try:
            payload = serialize(response.value, fmt='json')
        except (ValueError, RecursionError):
            # Circular structures still have to produce a line
            payload = serialize(repr(response.value), fmt='json')
        # Trailing blank line after every response
        return f"{response.tag} {payload}\n"

    def emit(self, response: Response):
        stream = self.err if response.is_error else self.out
        self.write_line(self.format(response), stream=stream)

    def flush(self):
        self.out.flush()
        self.err.flush()
