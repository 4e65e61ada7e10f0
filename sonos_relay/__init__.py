"""Now-playing relay for the Sonos web player."""

__version__ = "0.1.0"
