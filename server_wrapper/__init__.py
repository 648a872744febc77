"""Keeps a game server running and syncs its mods and datapacks before every start."""

__version__ = "0.2.0"
