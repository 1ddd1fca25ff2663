"""Rangewatch: Ludus range dashboard backend."""
