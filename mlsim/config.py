"""INI configuration for the simulator."""

from __future__ import annotations

import configparser
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence, Tuple

from .errors import ConfigError
from .host import TimingMode
from .logsink import LogSink
from .paths import PathResolver


@dataclass(frozen=True)
class OptionRule:
    kind: str
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    choices: Tuple[str, ...] = ()


VALID_OPTIONS: Dict[str, OptionRule] = {
    "fps": OptionRule("number", minimum=0),
    "ups": OptionRule("number", minimum=0),
    "debug_main_loop_timing": OptionRule("choice", choices=("timer", "busy", "idle")),
    "fake_root": OptionRule("string"),
    "debug_log_level": OptionRule("choice", choices=("warn", "trace", "debug", "info", "error", "fatal")),
    "timer_resolution": OptionRule("number", minimum=1, maximum=1000),
}

DEFAULTS: Dict[str, Any] = {
    "fps": 60,
    "ups": 55,
    "debug_main_loop_timing": "timer",
    "fake_root": None,
    "debug_log_level": "warn",
    "timer_resolution": 10,
}


def _to_number(text: str) -> Optional[float]:
    try:
        value = float(text)
    except (TypeError, ValueError):
        return None
    return int(value) if value.is_integer() else value


class SimulatorConfig:
    """Options from the ``[mls]`` section of an INI file, validated on load."""

    SECTION = "mls"
    DEFAULT_FILES = ("mls.dev.ini", "mls.ini")

    def __init__(
        self,
        path: Optional[str] = None,
        *,
        section: str = SECTION,
        valid_options: Dict[str, OptionRule] = VALID_OPTIONS,
        log: Optional[LogSink] = None,
    ) -> None:
        self.log = log or LogSink()
        self.path = path
        self.options: Dict[str, Any] = {}
        if path:
            parser = configparser.ConfigParser(interpolation=None)
            try:
                read = parser.read(path, encoding="utf-8")
            except configparser.Error as exc:
                raise ConfigError(f"invalid config file {path}: {exc}") from exc
            if not read:
                self.log.warn(f"config file {path} could not be read", "config")
            elif not parser.has_section(section):
                self.log.warn(f"config file {path} has no [{section}] section", "config")
            else:
                self.options = dict(parser.items(section))
                self.log.info(f"config loaded from {path}", "config")
        self.validate_options(valid_options)

    @classmethod
    def discover(
        cls,
        resolver: PathResolver,
        names: Sequence[str] = DEFAULT_FILES,
        *,
        log: Optional[LogSink] = None,
    ) -> "SimulatorConfig":
        for name in names:
            real, found = resolver.resolve(name)
            if found:
                return cls(real, log=log)
        return cls(None, log=log)

    def validate_options(self, valid_options: Dict[str, OptionRule]) -> None:
        for name in list(self.options):
            rule = valid_options.get(name)
            if rule is None:
                self.log.warn(f"config: unknown option '{name}' ignored", "config")
                del self.options[name]
                continue
            value = self._validate_option(name, self.options[name], rule)
            if value is None:
                del self.options[name]
            else:
                self.options[name] = value

    def _validate_option(self, name: str, raw: Any, rule: OptionRule) -> Any:
        text = str(raw).strip()
        if rule.kind == "number":
            value = _to_number(text)
            if value is None:
                self.log.warn(f"config: option '{name}' must be a number", "config")
                return None
            if rule.minimum is not None and value < rule.minimum:
                self.log.warn(f"config: option '{name}' raised to {rule.minimum}", "config")
                value = rule.minimum
            if rule.maximum is not None and value > rule.maximum:
                self.log.warn(f"config: option '{name}' lowered to {rule.maximum}", "config")
                value = rule.maximum
            return value
        if rule.kind == "choice":
            choice = text.lower()
            if name == "debug_main_loop_timing" and choice in ("1", "2", "3"):
                choice = TimingMode.from_any(int(choice)).value
            if choice not in rule.choices:
                self.log.warn(f"config: option '{name}' must be one of {', '.join(rule.choices)}", "config")
                return rule.choices[0]
            return choice
        return text or None

    def get(self, name: str, default: Any = None) -> Any:
        if name in self.options:
            return self.options[name]
        if default is not None:
            return default
        return DEFAULTS.get(name)

