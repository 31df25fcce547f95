"""taskguard: health checking for running tasks."""

__version__ = "0.1.0"
