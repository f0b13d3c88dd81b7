"""Presentation helpers for DCA Tracker: value formatting and price charts."""

__all__ = ["save_price_chart"]


def __getattr__(name: str):
    """Lazy-load the chart module so ui.utils can be used without matplotlib."""
    if name == "save_price_chart":
        from dca_tracker.ui.chart import save_price_chart
        return save_price_chart
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
