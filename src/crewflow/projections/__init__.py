"""Read-side projections."""

from crewflow.projections.base import DeclarativeProjection, Projection
from crewflow.projections.lookups import LookupProjection, TokenTarget

__all__ = ["DeclarativeProjection", "LookupProjection", "Projection", "TokenTarget"]
