"""Sync lifecycle core: snapshot shaping, state container, controller."""
