"""Price history chart rendering (matplotlib, no GUI backend required)."""

from __future__ import annotations

from typing import Optional, Sequence

from matplotlib.figure import Figure
from matplotlib.ticker import FuncFormatter

from dca_tracker.services.metrics import price_change
from dca_tracker.theming.style import (
    CHART_BACKGROUND,
    CHART_DPI,
    CHART_FIGSIZE,
    CHART_FOREGROUND,
    CHART_LINE_WIDTH,
    COLOR_LOSS,
    COLOR_PROFIT,
)


def build_price_figure(history: Sequence[float], currency: str = "USD", title: Optional[str] = None) -> Figure:
    """
    Build a line chart of a price series.

    The line is orange when the window closed up and red when it closed down.
    With fewer than two points the figure only carries a "no data" label.
    """
    fig = Figure(figsize=CHART_FIGSIZE, facecolor=CHART_BACKGROUND)
    ax = fig.add_subplot(111, facecolor=CHART_BACKGROUND)
    ax.tick_params(colors=CHART_FOREGROUND)
    for side in ("bottom", "top", "right", "left"):
        ax.spines[side].set_color(CHART_FOREGROUND)

    change = price_change(history)
    if change is None:
        ax.text(0.5, 0.5, "Price data not available", ha="center", va="center",
                color=CHART_FOREGROUND, fontsize=12, transform=ax.transAxes)
        ax.set_xticks([])
        ax.set_yticks([])
        return fig

    color = COLOR_PROFIT if change.change >= 0 else COLOR_LOSS
    ax.plot(range(len(history)), list(history), color=color, linewidth=CHART_LINE_WIDTH)
    ax.set_xticks([])
    ax.yaxis.set_major_formatter(FuncFormatter(lambda v, _pos: f"{v:,.0f}"))
    ax.set_ylabel(currency.upper(), color=CHART_FOREGROUND)
    ax.set_title(
        title or f"BTC 24h  {change.change:+,.2f} {currency.upper()} ({change.change_pct:+.2f}%)",
        color=CHART_FOREGROUND,
    )
    fig.tight_layout()
    return fig


def save_price_chart(history: Sequence[float], path: str, currency: str = "USD") -> str:
    """Render the chart to an image file (format from the extension). Returns path."""
    fig = build_price_figure(history, currency)
    fig.savefig(path, dpi=CHART_DPI, facecolor=CHART_BACKGROUND)
    return path
