"""State layer.

The single place where decoded feed events are merged into per-track race
state and lap statistics.
"""
