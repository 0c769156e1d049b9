"""SchemaLoom - incremental AI analysis of relational schemas."""

__version__ = "0.1.0"
