"""deployctl - dependency-ordered, resumable contract deployment."""

__version__ = "0.1.0"
