"""Canvas Sync: back up Canvas course exports with resumable downloads."""

__version__ = "0.1.0"
