"""Recorder Sentinel: keeps an in-page interaction recorder alive in supervised browser tabs."""

__version__ = "0.1.0"
