"""tcpview-live: live, de-duplicated view of the host's TCP/UDP connection table."""

__version__ = "0.3.0"
