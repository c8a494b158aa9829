"""Sparkline widget fed from history rings.

Each column is one ring slot, oldest on the left. Multi-row height gives
8 vertical levels per row; colours come from a percentage gradient.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum
from typing import TYPE_CHECKING

from rich.text import Text
from textual.reactive import reactive
from textual.widgets import Static

from sysmeter.config import SparklineConfig, UsageColors

if TYPE_CHECKING:
    from textual.app import RenderResult

    from sysmeter.ringbuffer import HistoryRing

RGB = tuple[int, int, int]


def _parse_hex_color(hex_color: str) -> RGB:
    """Parse "#RRGGBB" or "#RGB" to an RGB tuple."""
    hex_color = hex_color.lstrip("#")
    if len(hex_color) == 3:
        hex_color = "".join(c * 2 for c in hex_color)
    return (
        int(hex_color[0:2], 16),
        int(hex_color[2:4], 16),
        int(hex_color[4:6], 16),
    )


def _rgb_to_hex(rgb: RGB) -> str:
    return "#{:02x}{:02x}{:02x}".format(*rgb)


def _lerp_color(a: RGB, b: RGB, t: float) -> RGB:
    """Linear interpolation between two colours, t clamped to [0, 1]."""
    t = max(0.0, min(1.0, t))
    return (
        int(a[0] + (b[0] - a[0]) * t),
        int(a[1] + (b[1] - a[1]) * t),
        int(a[2] + (b[2] - a[2]) * t),
    )


class GradientColor:
    """Maps a value to a colour interpolated between threshold stops.

    Example:
        ```python
        gradient = GradientColor([(0, "#50fa7b"), (50, "#f1fa8c"), (100, "#ff5555")])
        gradient(25)  # halfway between green and yellow
        ```
    """

    def __init__(self, stops: list[tuple[float, str]]) -> None:
        if len(stops) < 2:
            raise ValueError("Gradient requires at least 2 color stops")
        self._stops: list[tuple[float, RGB]] = [
            (threshold, _parse_hex_color(color))
            for threshold, color in sorted(stops, key=lambda s: s[0])
        ]

    @classmethod
    def for_usage(cls, colors: UsageColors) -> GradientColor:
        """Green to yellow to red across 0-100%."""
        return cls([(0, colors.low), (50, colors.medium), (100, colors.high)])

    def __call__(self, value: float) -> str:
        first, last = self._stops[0], self._stops[-1]
        if value <= first[0]:
            return _rgb_to_hex(first[1])
        if value >= last[0]:
            return _rgb_to_hex(last[1])
        for (t1, c1), (t2, c2) in zip(self._stops, self._stops[1:]):
            if t1 <= value <= t2:
                t = (value - t1) / (t2 - t1) if t2 != t1 else 0.0
                return _rgb_to_hex(_lerp_color(c1, c2, t))
        return _rgb_to_hex(last[1])


class SparklineMode(Enum):
    """Character set for sparkline columns."""

    BLOCKS = "blocks"  # ▁▂▃▄▅▆▇█
    BRAILLE = "braille"  # ⡀⣀⣄⣤⣦⣶⣷⣿


class Sparkline(Static):
    """Percentage graph over a fixed window.

    Values are scaled between min_value and max_value. When the widget is
    narrower than the data, the most recent values are shown.
    """

    CHARS: dict[SparklineMode, str] = {
        SparklineMode.BLOCKS: " ▁▂▃▄▅▆▇█",
        SparklineMode.BRAILLE: " ⡀⣀⣄⣤⣦⣶⣷⣿",
    }
    LEVELS_PER_ROW = 8

    DEFAULT_CSS = """
    Sparkline {
        width: 1fr;
        height: auto;
    }
    """

    data: reactive[list[float]] = reactive(list, always_update=True)

    def __init__(
        self,
        height: int = 1,
        max_value: float | None = 100,
        min_value: float = 0,
        mode: SparklineMode = SparklineMode.BRAILLE,
        color_func: Callable[[float], str] | None = None,
        **kwargs,
    ) -> None:
        """Initialize sparkline.

        Args:
            height: Number of character rows (1-4)
            max_value: Top of the scale, None to auto-scale to the data maximum
            min_value: Bottom of the scale
            mode: Character set
            color_func: Maps a value to a Rich colour
            **kwargs: Passed to Static.__init__
        """
        super().__init__(**kwargs)
        self._height = max(1, min(4, height))
        self._max_value = max_value
        self._min_value = min_value
        self._mode = mode
        self._color_func = color_func

    @classmethod
    def from_config(
        cls,
        sparkline: SparklineConfig,
        colors: UsageColors,
        **kwargs,
    ) -> Sparkline:
        """Percentage sparkline styled from the [tui] config sections."""
        return cls(
            height=sparkline.height,
            mode=SparklineMode(sparkline.mode),
            color_func=GradientColor.for_usage(colors),
            **kwargs,
        )

    def set_history(self, ring: HistoryRing) -> None:
        """Replace the data with a ring's contents, oldest first."""
        self.data = list(ring.read_chronological())

    def clear(self) -> None:
        self.data = []

    def visible_data(self) -> list[float]:
        """The tail of the data that fits the current width."""
        width = self.size.width
        if width > 0 and len(self.data) > width:
            return self.data[-width:]
        return list(self.data)

    def render(self) -> RenderResult:
        values = self.visible_data()
        if not values:
            return Text(" " * max(1, self.size.width))

        top = self._max_value if self._max_value is not None else max(values)
        if top <= self._min_value:
            top = self._min_value + 1.0

        rows: list[Text] = [Text() for _ in range(self._height)]
        for value in values:
            color = self._color_func(value) if self._color_func else ""
            for row, char in zip(rows, self._render_column(self._scale_value(value, top))):
                row.append(char, style=color or None)

        # Rows are built bottom-up
        return Text("\n").join(reversed(rows))

    def _scale_value(self, value: float, top: float) -> int:
        """Scale a value to 0..height * LEVELS_PER_ROW."""
        total_levels = self._height * self.LEVELS_PER_ROW
        normalized = (value - self._min_value) / (top - self._min_value)
        normalized = max(0.0, min(1.0, normalized))
        return int(normalized * total_levels)

    def _render_column(self, level: int) -> list[str]:
        """Characters for one column, bottom row first."""
        chars = self.CHARS[self._mode]
        column = []
        for row in range(self._height):
            remaining = level - row * self.LEVELS_PER_ROW
            column.append(chars[max(0, min(self.LEVELS_PER_ROW, remaining))])
        return column

    def watch_data(self, new_data: list[float]) -> None:
        self.refresh()
