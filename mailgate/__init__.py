"""mailgate — mail-filter gateway that scans message content with THOR Thunderstorm."""

__version__ = "1.0.0"
