"""Logging and metrics for apitracker."""
