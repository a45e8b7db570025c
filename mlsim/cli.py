"""mlsim command line entry point."""

from __future__ import annotations

import argparse
import logging
import os
import threading
from typing import List, Optional

from .config import SimulatorConfig
from .errors import ConfigError
from .host import HeadlessHost, MonotonicClock, TimingMode
from .logsink import LogSink
from .paths import PathResolver
from .scheduler import Scheduler
from .script import ScriptState

LOG = logging.getLogger(__name__)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run handheld scripts on the desktop")
    parser.add_argument("script", nargs="?", help="Script to load and start")
    parser.add_argument("--fps", type=float, help="Target render rate (0 = unlimited)")
    parser.add_argument("--ups", type=float, help="Target update rate (0 = unlimited)")
    parser.add_argument("--timing", choices=[mode.value for mode in TimingMode], help="Main loop timing strategy")
    parser.add_argument("--fake-root", help="Directory used as the scripts' virtual root")
    parser.add_argument("--config", help="Config file (default: mls.dev.ini, then mls.ini)")
    parser.add_argument("--log-level", default=os.environ.get("MLSIM_LOG", "WARNING"), help="Logging level (default WARNING)")
    parser.add_argument("--duration", type=float, help="Seconds to run before exiting")
    parser.add_argument("--console", action="store_true", help="Start the interactive console")
    return parser


def build_scheduler(args: argparse.Namespace, host: HeadlessHost, log: LogSink, resolver: PathResolver) -> Scheduler:
    try:
        config = SimulatorConfig(args.config, log=log) if args.config else SimulatorConfig.discover(resolver, log=log)
    except ConfigError as exc:
        LOG.error("%s", exc)
        config = SimulatorConfig(None, log=log)
    log.set_level(config.get("debug_log_level"))
    resolver.set_virtual_root(args.fake_root or config.get("fake_root"))
    return Scheduler(
        host,
        resolver=resolver,
        log=log,
        update_rate=args.ups if args.ups is not None else config.get("ups"),
        render_rate=args.fps if args.fps is not None else config.get("fps"),
        timing=args.timing or config.get("debug_main_loop_timing"),
        timer_resolution=config.get("timer_resolution"),
    )


def _print_summary(scheduler: Scheduler, host: HeadlessHost) -> None:
    seconds = host.clock.time() / 1000.0
    print(
        f"{seconds:.1f} secs - {scheduler.get_total_updates()} updates - "
        f"{scheduler.get_current_ups()} ups - {scheduler.get_current_fps()} fps - "
        f"state {scheduler.get_state().name}"
    )


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.log_level)
    if not args.script and not args.console:
        parser.error("a script path is required unless --console is given")

    log = LogSink()
    resolver = PathResolver(log=log)
    host = HeadlessHost(MonotonicClock(), log=log)
    scheduler = build_scheduler(args, host, log, resolver)
    duration_ms = args.duration * 1000.0 if args.duration is not None else None

    if args.console:
        from .console import SimulatorConsole

        if args.script:
            host.call_soon(scheduler.load_and_start_script, args.script)
        loop = threading.Thread(target=host.run, kwargs={"duration_ms": duration_ms}, name="mlsim-host", daemon=True)
        loop.start()
        try:
            SimulatorConsole(scheduler, host).run()
        finally:
            host.call_soon(host.quit)
            loop.join(timeout=2.0)
        scheduler.shutdown()
        return 0

    if not scheduler.load_script(args.script):
        scheduler.shutdown()
        return 1
    host.call_soon(scheduler.start_script)
    done = (ScriptState.FINISHED, ScriptState.ERROR, ScriptState.NONE)
    try:
        host.run(until=lambda: scheduler.get_state() in done, duration_ms=duration_ms)
    except KeyboardInterrupt:
        print()
    _print_summary(scheduler, host)
    failed = scheduler.get_state() is ScriptState.ERROR
    scheduler.shutdown()
    return 1 if failed else 0
