import argparse
import asyncio
import logging
import sys

from ghostrun.ghostrun_config import load_config
from ghostrun.ghostrun_datatypes import ConfigError
from ghostrun.ghostrun_runtime import WorkerRuntime
from ghostrun.ghostrun_serialize import serialize


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="ghostrun-worker",
        description="Read RUN/EVAL blocks from stdin and answer them on stdout/stderr.",
    )
    p.add_argument("--config", help="YAML config file")
    p.add_argument("--legacy", action="store_true", default=None,
                   help="untagged protocol: every block is a RUN")
    p.add_argument("--exactly-once", action="store_true", default=None,
                   help="ignore repeated completion callback calls")
    p.add_argument("--preload", action="append", metavar="FILE",
                   help="Python file executed before serving (repeatable)")
    p.add_argument("--log-level", help="logging level (default WARNING)")
    p.add_argument("--print-config", action="store_true",
                   help="print the effective config as YAML and exit")
    return p


async def main(argv=None) -> int:
    """Serve the protocol on the process's standard streams until stdin closes."""
    args = build_arg_parser().parse_args(argv)
    try:
        config = load_config(
            args.config,
            tagged=False if args.legacy else None,
            exactly_once=args.exactly_once,
            preload=args.preload,
            log_level=args.log_level,
        )
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    if args.print_config:
        print(serialize(config.to_dict(), fmt="yaml"), end="")
        return 0

    # Logs share stderr with failure responses; drivers skip non-RES lines
    logging.basicConfig(level=config.log_level, stream=sys.stderr,
                        format="%(levelname)s:%(name)s:%(message)s")

    runtime = WorkerRuntime(config)
    try:
        await runtime._initialize()
    except Exception as e:
        print(f"Error: preload failed: {type(e).__name__}: {e}", file=sys.stderr)
        return 1
    try:
        await runtime.serve()
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


def run():
    try:
        code = asyncio.run(main())
    except KeyboardInterrupt:
        code = 130
    raise SystemExit(code)


if __name__ == "__main__":
    run()
