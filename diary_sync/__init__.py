"""Diary Sync - personal activity diary with realtime document sync."""

__version__ = "1.0.0"
