"""Pull request review bot: webhook-driven review queue and status dashboard."""

__version__ = "0.1.0"
