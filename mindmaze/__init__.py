"""MindMaze: rules engine for a room-exploration quiz game."""

__version__ = "0.1.0"
