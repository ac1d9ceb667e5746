"""Threadcast: threaded comments with realtime fan-out and client reconciliation."""

__version__ = "0.1.0"
