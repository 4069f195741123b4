"""Entropic optimal transport between weighted point clouds in the plane."""

__version__ = "0.1.0"
