"""Backend building blocks for the Combox chat service."""

__version__ = "0.1.0"