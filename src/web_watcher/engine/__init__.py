"""Rendering engine: browser lifecycle, surfaces, actions, and extraction."""
