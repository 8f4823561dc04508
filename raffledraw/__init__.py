"""Raffle ticketing and draw engine."""

__version__ = "0.1.0"
