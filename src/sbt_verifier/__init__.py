"""Pix-verified identity credentials minted as soulbound tokens."""

__version__ = "0.1.0"
