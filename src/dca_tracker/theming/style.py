"""Centralized colors and chart styling for DCA Tracker output."""

from __future__ import annotations

# Brand / value colors
BTC_ORANGE = "#F7931A"
COLOR_PROFIT = BTC_ORANGE
COLOR_LOSS = "#FF3B30"      # Red
NEUTRAL_COLOR = "#888888"   # Gray for descriptors and "no data"

# Chart (dark card look)
CHART_BACKGROUND = "#2b2b2b"
CHART_FOREGROUND = "white"
CHART_LINE_WIDTH = 2.0
CHART_FIGSIZE = (8, 3)
CHART_DPI = 100

# Text placeholder for absent values (no price fetched yet)
MISSING_VALUE = "n/a"
