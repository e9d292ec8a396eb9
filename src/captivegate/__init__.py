"""captivegate — time-boxed admission gateway for a captive wireless segment."""

__version__ = "0.1.0"
