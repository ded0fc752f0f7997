"""
Plinko Lounge - Frame rendering

The game loop and the visual recorder describe each frame as a
FrameSnapshot and hand it to a renderer. NullRenderer swallows frames
(headless runs, tests); ConsoleRenderer prints a compact rich panel every
few frames so an operator can watch a recording or a session progress.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Protocol

from rich.console import Console
from rich.panel import Panel


@dataclass
class FrameSnapshot:
    frame: int
    mode: str
    rows: int
    pegs: tuple = ()
    live_balls: list = field(default_factory=list)      # [Position]
    replay_balls: list = field(default_factory=list)    # [Position]
    bucket_labels: list = field(default_factory=list)
    highlighted: list = field(default_factory=list)     # buckets that just paid
    status: str = ""

    @property
    def ball_count(self) -> int:
        return len(self.live_balls) + len(self.replay_balls)


class Renderer(Protocol):
    def draw(self, snapshot: FrameSnapshot) -> None: ...


class NullRenderer:
    """Keeps the last snapshot and a frame count, draws nothing."""

    def __init__(self):
        self.frames = 0
        self.last: Optional[FrameSnapshot] = None

    def draw(self, snapshot: FrameSnapshot) -> None:
        self.frames += 1
        self.last = snapshot


class ConsoleRenderer:
    """Prints a status panel every `every` frames and on any payout."""

    def __init__(self, console: Optional[Console] = None, every: int = 30):
        self.console = console or Console()
        self.every = max(1, every)

    def _buckets(self, snapshot: FrameSnapshot) -> str:
        cells = []
        for i, label in enumerate(snapshot.bucket_labels):
            if i in snapshot.highlighted:
                cells.append(f"[bold black on green]{label}[/bold black on green]")
            else:
                cells.append(str(label))
        return " ".join(cells)

    def draw(self, snapshot: FrameSnapshot) -> None:
        if snapshot.frame % self.every and not snapshot.highlighted:
            return
        color = "yellow" if snapshot.mode == "RECORDING" else "cyan"
        body = (
            f"[{color}]{snapshot.mode}[/{color}]  rows={snapshot.rows}  "
            f"frame={snapshot.frame}  live={len(snapshot.live_balls)}  "
            f"replay={len(snapshot.replay_balls)}\n"
            f"{self._buckets(snapshot)}"
        )
        if snapshot.status:
            body += f"\n[dim]{snapshot.status}[/dim]"
        self.console.print(Panel(body, title="Plinko", expand=False))
