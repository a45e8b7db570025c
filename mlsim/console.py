"""Interactive console controlling a scheduler running on the host loop."""

from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from prompt_toolkit import PromptSession
from prompt_toolkit.history import InMemoryHistory
from prompt_toolkit.patch_stdout import patch_stdout
from tabulate import tabulate

from .scheduler import Scheduler

LOGGER = logging.getLogger(__name__)


def split_command(line: str) -> List[str]:
    if not line:
        return []
    try:
        return shlex.split(line, comments=False, posix=True)
    except ValueError as exc:
        return [line.strip(), f"#parse-error:{exc}"]


@dataclass
class ConsoleCommand:
    name: str
    description: str
    handler: Callable[[List[str]], None]
    usage: str = ""
    aliases: Sequence[str] = field(default_factory=tuple)

    def format_help(self) -> str:
        label = f"{self.name} {self.usage}".strip()
        return f"{label:<14} {self.description}"


class SimulatorConsole:
    """Prompt for commands and forward them to the host loop thread.

    The scheduler is only touched from the thread running ``host.run``;
    each parsed command is posted there with ``host.call_soon``.
    """

    def __init__(self, scheduler: Scheduler, host: Any, *, prompt: str = "mlsim> ") -> None:
        self.scheduler = scheduler
        self.host = host
        self.prompt = prompt
        self.running = False
        self.commands: Dict[str, ConsoleCommand] = {}
        self._aliases: Dict[str, str] = {}
        for command in self._build_commands():
            self.commands[command.name] = command
            for alias in command.aliases:
                self._aliases[alias] = command.name

    def _build_commands(self) -> List[ConsoleCommand]:
        s = self.scheduler
        return [
            ConsoleCommand("load", "load a script", self._cmd_load, "PATH"),
            ConsoleCommand("start", "start the loaded script", lambda argv: s.start_script()),
            ConsoleCommand("stop", "stop the script", lambda argv: s.stop_script()),
            ConsoleCommand("pause", "pause the script", lambda argv: s.pause_script()),
            ConsoleCommand("resume", "resume a paused script", lambda argv: s.resume_script(), aliases=("continue",)),
            ConsoleCommand("toggle", "pause or resume", lambda argv: s.pause_or_resume_script(), aliases=("p",)),
            ConsoleCommand("restart", "restart the script", lambda argv: s.restart_script()),
            ConsoleCommand("reload", "reload the script from disk and start it", lambda argv: s.reload_and_start_script()),
            ConsoleCommand("step", "run one logic iteration, then pause", lambda argv: s.debug_step_script(), aliases=("s",)),
            ConsoleCommand("fps", "show or set the target render rate", self._cmd_fps, "[N]"),
            ConsoleCommand("ups", "show or set the target update rate", self._cmd_ups, "[N]"),
            ConsoleCommand("status", "show scheduler status", self._cmd_status),
            ConsoleCommand("log", "show recent log entries", self._cmd_log, "[N]"),
            ConsoleCommand("help", "list commands", self._cmd_help, aliases=("?",)),
            ConsoleCommand("quit", "stop the simulator", self._cmd_quit, aliases=("exit", "q")),
        ]

    # ------------------------------------------------------------------
    # commands (run on the host thread)

    def _cmd_load(self, argv: List[str]) -> None:
        if not argv:
            print("usage: load PATH")
            return
        if self.scheduler.load_script(argv[0]):
            print(f"loaded {argv[0]}")
        else:
            print(f"could not load {argv[0]}")

    def _rate_command(self, argv: List[str], label: str, getter: Callable[[], float], setter: Callable[[float], None]) -> None:
        if not argv:
            print(f"target {label}: {getter()}")
            return
        try:
            value = float(argv[0])
        except ValueError:
            print(f"invalid {label} value: {argv[0]}")
            return
        setter(int(value) if value.is_integer() else value)
        print(f"target {label}: {getter()}")

    def _cmd_fps(self, argv: List[str]) -> None:
        s = self.scheduler
        self._rate_command(argv, "FPS", s.get_target_render_rate, s.set_target_render_rate)

    def _cmd_ups(self, argv: List[str]) -> None:
        s = self.scheduler
        self._rate_command(argv, "UPS", s.get_target_update_rate, s.set_target_update_rate)

    def _cmd_status(self, argv: List[str]) -> None:
        rows = [[key, value] for key, value in self.scheduler.status().items()]
        print(tabulate(rows, headers=["field", "value"], tablefmt="github"))

    def _cmd_log(self, argv: List[str]) -> None:
        limit = 20
        if argv:
            try:
                limit = int(argv[0])
            except ValueError:
                print(f"invalid count: {argv[0]}")
                return
        entries = self.scheduler.log.entries(limit)
        if not entries:
            print("(no log entries)")
            return
        rows = [[entry.seq, entry.level, entry.category, entry.message] for entry in entries]
        print(tabulate(rows, headers=["seq", "level", "category", "message"], tablefmt="github"))

    def _cmd_help(self, argv: List[str]) -> None:
        for name in sorted(self.commands):
            print(self.commands[name].format_help())

    def _cmd_quit(self, argv: List[str]) -> None:
        self.running = False
        self.host.quit()

    def _execute(self, command: ConsoleCommand, argv: List[str]) -> None:
        try:
            command.handler(argv)
        except Exception as exc:
            LOGGER.exception("command failed")
            print(f"Command '{command.name}' failed: {exc}")

    # ------------------------------------------------------------------
    # input side

    def resolve(self, name: str) -> Optional[ConsoleCommand]:
        return self.commands.get(self._aliases.get(name, name))

    def dispatch(self, line: str) -> bool:
        """Parse ``line`` and post the command to the host loop."""
        argv = split_command(line.strip())
        if not argv:
            return False
        name, *args = argv
        if args and args[-1].startswith("#parse-error"):
            print(f"Parse error: {args[-1].split(':', 1)[-1]}")
            return False
        command = self.resolve(name)
        if command is None:
            print(f"Unknown command: {name}")
            return False
        if command.name == "quit":
            self.running = False
        self.host.call_soon(self._execute, command, args)
        return True

    def run(self) -> int:
        session: PromptSession = PromptSession(self.prompt, history=InMemoryHistory())
        self.running = True
        while self.running:
            try:
                with patch_stdout():
                    line = session.prompt()
            except (EOFError, KeyboardInterrupt):
                print()
                self.dispatch("quit")
                break
            self.dispatch(line)
        return 0
