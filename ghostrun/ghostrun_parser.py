from typing import List

from ghostrun.ghostrun_datatypes import Command, CommandKind


class CommandParser:
    """Classifies a framed block as EVAL, RUN or an invalid command.

    In the legacy (untagged) variant there is no leading command line and
    every block is a RUN whose body is the whole block.
    """

    KINDS = {"EVAL": CommandKind.EVAL, "RUN": CommandKind.RUN}

    def __init__(self, tagged: bool = True):
        self.tagged = tagged

    def parse(self, block: List[str]) -> Command:
        if not self.tagged:
            return Command(CommandKind.RUN, tuple(block))
        if not block:
            return Command(CommandKind.INVALID, token="")
        head, body = block[0], tuple(block[1:])
        kind = self.KINDS.get(head.strip())
        if kind is None:
            return Command(CommandKind.INVALID, body, token=head)
        return Command(kind, body)
