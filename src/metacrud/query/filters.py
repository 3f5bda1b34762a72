"""Filter compiler: FilterSpec + controller metadata -> storage predicate."""

import logging

from metacrud.metadata.types import ControllerMetadata
from metacrud.params.extract import FILTER_PREFIX, coerce
from metacrud.params.types import FilterSpec
from metacrud.query.predicates import Condition, Predicate, all_of

logger = logging.getLogger(__name__)


def compile_filters(spec: FilterSpec | None, meta: ControllerMetadata) -> Predicate | None:
    """Build one predicate conjoining every constraint in spec.

    A field with a custom filter function delegates predicate construction
    to it (raw value and operator tag passed through). Other fields compare
    their stored value natively, after coercing the value by the field's
    declared type. Filters on undeclared fields, and native comparisons on
    fields that are not readable, contribute no constraint.

    Returns:
        The conjunction, or None when nothing constrains the query.
    """
    if not spec:
        return None

    predicates: list[Predicate | None] = []
    for field, constraints in spec.items():
        field_meta = meta.get(field)
        if field_meta is None:
            logger.debug(
                "Ignoring filter on undeclared field '%s' of '%s'", field, meta.name
            )
            continue
        if field_meta.filter is None and not field_meta.readable:
            logger.debug(
                "Ignoring filter on unreadable field '%s' of '%s'", field, meta.name
            )
            continue

        for value, op in constraints:
            if field_meta.filter is not None:
                predicates.append(field_meta.filter(value, op))
                continue
            if field_meta.type is not None:
                value = coerce(value, field_meta.type, f"{FILTER_PREFIX}{field}")
            predicates.append(Condition(field, op, value))

    return all_of(*predicates)
