"""powerstate: device-state aggregation and power transition daemon."""

__version__ = "0.3.0"
