"""deckmix: four-deck audio console with an autonomous transition director."""

__version__ = "0.1.0"
