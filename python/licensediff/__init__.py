"""licensediff - dependency and license drift between two commits."""

__version__ = "1.0.0"
