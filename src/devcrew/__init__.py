"""devcrew: workflow coordination for a crew of software-development agents."""

__version__ = "0.1.0"
