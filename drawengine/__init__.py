"""Drawing-and-distribution engine for recurring prize drawings."""

__version__ = "0.1.0"
