"""pg-fanout: run one query against many PostgreSQL servers into a zip of CSVs."""

from pg_fanout.__about__ import __version__

__all__ = ["__version__"]
