"""Song and karaoke request queues for live events."""

__version__ = "0.1.0"
