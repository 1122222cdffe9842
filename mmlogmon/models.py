"""Log entry model handed from an aggregator to the dispatcher."""

from dataclasses import dataclass


@dataclass(frozen=True)
class LogEntry:
    source: str                # path of the watched file
    lines: tuple[str, ...]     # raw lines, in arrival order

    @property
    def first_line(self) -> str:
        return self.lines[0] if self.lines else ""

    @property
    def last_line(self) -> str:
        return self.lines[-1] if self.lines else ""

    def __len__(self) -> int:
        return len(self.lines)
