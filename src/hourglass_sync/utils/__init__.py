"""Utility helpers for Hourglass Sync."""
