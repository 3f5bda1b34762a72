"""Filter compilation, projection, and the query engine."""

from metacrud.query.predicates import AllOf, AnyOf, Condition, Match, Not, Predicate

__all__ = ["AllOf", "AnyOf", "Condition", "Match", "Not", "Predicate"]
