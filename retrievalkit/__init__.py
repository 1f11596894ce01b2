"""Building blocks for content retrieval: candidate streams, splitting, coordination, query ranking and selectors."""

__version__ = "0.1.0"

__all__ = [
    "candidates",
    "combinators",
    "coordinators",
    "core",
    "queries",
    "selectors",
    "streams",
]