"""Case Engine - case progression and deadline rules."""

__version__ = "1.0.0"
