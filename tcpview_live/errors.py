from __future__ import annotations

class TrackerError(Exception):
    """Base for every error raised by the tracking core."""

class SourceUnavailable(TrackerError):
    """The connection table could not be opened or parsed."""

class PartialRead(TrackerError):
    """A single row of the connection table was malformed."""

    def __init__(self, table: str, line: str, reason: str):
        super().__init__(f"{table}: {reason}: {line.strip()!r}")
        self.table = table
        self.line = line
        self.reason = reason

class SourceBroken(TrackerError):
    """Terminal: the connection table failed too many times in a row."""

    def __init__(self, failures: int, last: BaseException | None = None):
        super().__init__(f"connection table unreadable after {failures} consecutive attempts: {last}")
        self.failures = failures
        self.last = last

class ResolverError(TrackerError):
    """Base for privileged helper failures. Never fatal to the engine."""

class ElevationDenied(ResolverError):
    """The user dismissed or failed the privilege-escalation prompt."""

class SpawnFailed(ResolverError):
    """The helper process could not be launched or did not handshake."""

class ChannelBroken(ResolverError):
    """The helper died, hung, or the pipe to it broke."""

class WireError(ValueError):
    """Malformed message on the helper channel."""

class ConfigError(ValueError):
    """Invalid configuration value."""
