"""
Console reporting for the load balancer.

Operator-facing output (started/stopped events, allocation reports, the
startup summary) goes through a Reporter so it can be muted or captured.
Diagnostics still go through ``logging``.
"""

from enum import Enum
from typing import List, Optional, Sequence, Tuple

from rich.console import Console
from rich.table import Table


class ReportLevel(Enum):
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    LINE = "line"


LEVEL_STYLES = {
    ReportLevel.INFO: "green",
    ReportLevel.WARN: "yellow",
    ReportLevel.ERROR: "bold red",
    ReportLevel.LINE: None,
}


class Reporter:
    """Base reporter; every method is a no-op"""

    def report(self, message: str, level: ReportLevel = ReportLevel.LINE) -> None:
        pass

    def table(self, headers: Sequence[str], rows: Sequence[Sequence[object]]) -> None:
        pass

    def newline(self) -> None:
        pass

    def info(self, message: str) -> None:
        self.report(message, ReportLevel.INFO)

    def warn(self, message: str) -> None:
        self.report(message, ReportLevel.WARN)

    def error(self, message: str) -> None:
        self.report(message, ReportLevel.ERROR)

    def line(self, message: str) -> None:
        self.report(message, ReportLevel.LINE)


class MuteReporter(Reporter):
    """Used for --mute"""


class ConsoleReporter(Reporter):
    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def report(self, message: str, level: ReportLevel = ReportLevel.LINE) -> None:
        self.console.print(message, style=LEVEL_STYLES[level], highlight=False)

    def table(self, headers: Sequence[str], rows: Sequence[Sequence[object]]) -> None:
        table = Table(show_header=True, header_style="bold")
        for header in headers:
            table.add_column(header)
        for row in rows:
            table.add_row(*(str(cell) for cell in row))
        self.console.print(table)

    def newline(self) -> None:
        self.console.print()


class CapturingReporter(Reporter):
    """Records everything it is given; used by tests"""

    def __init__(self):
        self.messages: List[Tuple[ReportLevel, str]] = []
        self.tables: List[Tuple[List[str], List[List[object]]]] = []

    def report(self, message: str, level: ReportLevel = ReportLevel.LINE) -> None:
        self.messages.append((level, message))

    def table(self, headers: Sequence[str], rows: Sequence[Sequence[object]]) -> None:
        self.tables.append((list(headers), [list(row) for row in rows]))

    def lines(self, level: Optional[ReportLevel] = None) -> List[str]:
        return [msg for lvl, msg in self.messages if level is None or lvl is level]


def make_reporter(mute: bool) -> Reporter:
    return MuteReporter() if mute else ConsoleReporter()
