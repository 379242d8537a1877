"""forged: REST daemon for compiling nginx from source."""

__version__ = "0.1.0"
