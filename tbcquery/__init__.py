"""Query services for TBC chain addresses, tokens, pools and exchange rates."""

__version__ = "0.1.0"