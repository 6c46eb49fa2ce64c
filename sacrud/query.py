"""
Query string translation

The route init step strips the $skip, $limit, $sort, $select and $populate operators from
the request filter and stores them in a QueryOptions instance (ctx.options).
The remaining filter is compiled into sqla expressions by `compile_filter`:

    {"name": "x"}                          => name = 'x'
    {"name": ["x", "y"]}                   => name IN ('x', 'y')
    {"age": {"$gte": 18, "$lt": 65}}       => age >= 18 AND age < 65
    {"$or": [{"name": "x"}, {"test": true}]} => name = 'x' OR test = 1
    {"$not": {"name": "x"}}                => NOT (name = 'x')
"""
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional
import operator
from sqlalchemy import and_, false, not_, or_, true
import sacrud
from .document import cast_value, column_of
from .errors import FilterError
from .hidden import default_select, get_hidden_fields, omit_obj, omit_query, omit_str, primary_keys, split_fields
from .populate import PopulateOptions, parse_populate

QUERY_OPERATORS = ("$skip", "$limit", "$sort", "$select", "$populate")

COMPARISON_OPERATORS = {
    "$eq": operator.eq,
    "$ne": operator.ne,
    "$gt": operator.gt,
    "$gte": operator.ge,
    "$lt": operator.lt,
    "$lte": operator.le,
}

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}
RESPONSE_HEADERS = dict(NO_CACHE_HEADERS, **{"Content-Type": "application/json; charset=UTF-8"})


@dataclass
class QueryOptions:
    """
    Options parsed from the query string operators
    """

    skip: int = 0
    limit: Optional[int] = None
    sort: Optional[str] = None
    select: Optional[str] = None
    populate: Optional[List[PopulateOptions]] = None
    hidden: List[str] = field(default_factory=list)


def _to_int(name: str, value: Any, default: Optional[int]) -> Optional[int]:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise FilterError(f"{name} should be an integer, not '{value}'")


def _to_limit(value: Any) -> Optional[int]:
    """
    $limit values that aren't numbers (or 0) mean there's no limit
    """
    if value is None or value == "":
        return None
    try:
        return int(value) or None
    except (TypeError, ValueError):
        sacrud.log.debug(f"Ignoring $limit '{value}'")
        return None


def parse_options(model, query: dict, hidden: List[str], select: str) -> QueryOptions:
    """
    :param model: model being queried
    :param query: request filter dict holding the $ operators
    :param hidden: hidden fields of the model
    :param select: default select string
    :return: QueryOptions
    """
    skip = _to_int("$skip", query.get("$skip"), 0)
    if skip < 0:
        raise FilterError(f"$skip should be positive, not '{skip}'")
    limit = _to_limit(query.get("$limit"))
    if limit is not None and limit < 0:
        raise FilterError(f"$limit should be positive, not '{limit}'")

    options = QueryOptions(
        skip=skip,
        limit=limit,
        sort=omit_str(query.get("$sort"), hidden),
        select=omit_str(query.get("$select"), hidden) or select,
        populate=omit_str(query.get("$populate"), hidden),
        hidden=hidden,
    )
    if options.populate:
        options.populate = parse_populate(model, options.populate)
    else:
        options.populate = None
    return options


def make_init(model) -> Callable:
    """
    Create the middleware that starts off the handler chain of a model route:
    - disable caching, set the content type
    - parse the query string options
    - remove the hidden fields from the body and the filter
    :param model: exposed sqla model
    :return: init middleware
    """
    hidden = get_hidden_fields(model)
    select = default_select(model)
    protected = hidden + primary_keys(model)

    def init(ctx, next):
        # Ensure api is not cached, ensure content type
        for header, value in RESPONSE_HEADERS.items():
            ctx.res.set(header, value)

        query = ctx.query
        ctx.options = parse_options(model, query, hidden, select)

        # Remove operators from query
        for query_operator in QUERY_OPERATORS:
            query.pop(query_operator, None)

        # Remove hidden fields
        omit_obj(ctx.body, protected)
        omit_query(query, hidden)

        return next()

    return init


def _compile_condition(column, attr, condition: Any):
    """
    :return: sqla expression for the condition on a single attribute
    """

    def cast(value):
        try:
            return cast_value(column, value)
        except (ValueError, TypeError):
            raise FilterError(f"Invalid value '{value}' for '{attr.key}'")

    if isinstance(condition, list):
        return attr.in_([cast(value) for value in condition])

    if not isinstance(condition, dict):
        value = cast(condition)
        return attr.is_(None) if value is None else attr == value

    expressions = []
    for op_name, value in condition.items():
        if op_name in COMPARISON_OPERATORS:
            value = cast(value)
            if value is None and op_name in ("$eq", "$ne"):
                expressions.append(attr.is_(None) if op_name == "$eq" else attr.is_not(None))
            else:
                expressions.append(COMPARISON_OPERATORS[op_name](attr, value))
        elif op_name in ("$in", "$nin"):
            values = value if isinstance(value, list) else str(value).split(",")
            values = [cast(val) for val in values]
            expressions.append(attr.in_(values) if op_name == "$in" else attr.not_in(values))
        elif op_name == "$exists":
            exists = _to_bool(value)
            expressions.append(attr.is_not(None) if exists else attr.is_(None))
        elif op_name == "$not":
            expressions.append(not_(_compile_condition(column, attr, value)))
        else:
            raise FilterError(f"Unknown operator '{op_name}' for '{attr.key}'")
    return and_(*expressions) if expressions else true()


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.lower() not in ("false", "0", "no", "off", "")
    return bool(value)


def _clauses(query: Any, op_name: str) -> list:
    if isinstance(query, dict):
        return [query]
    if not isinstance(query, list):
        raise FilterError(f"{op_name} should hold a list of filters")
    return query


def compile_filter(model, query: dict):
    """
    Compile a mongo style filter dict into a sqla expression
    :param model: queried model
    :param query: filter dict
    :return: sqla expression
    """
    if not isinstance(query, dict):
        raise FilterError(f"Invalid filter {query!r}")

    expressions = []
    for attr_name, condition in query.items():
        if attr_name in ("$or", "$nor"):
            compiled = or_(false(), *[compile_filter(model, clause) for clause in _clauses(condition, attr_name)])
            expressions.append(compiled if attr_name == "$or" else not_(compiled))
        elif attr_name == "$and":
            expressions.append(and_(true(), *[compile_filter(model, clause) for clause in _clauses(condition, attr_name)]))
        elif attr_name == "$not":
            expressions.append(not_(compile_filter(model, condition)))
        else:
            column = column_of(model, attr_name)
            if column is None:
                # validation failed: this attribute can't be queried
                sacrud.log.warning(f"Invalid filter {model.__name__}.{attr_name}")
                expressions.append(false())
                continue
            expressions.append(_compile_condition(column, getattr(model, attr_name), condition))

    return and_(true(), *expressions)


def compile_sort(model, sort: Optional[str]) -> list:
    """
    :param sort: sort string, eg. "test -name"
    :return: list of sqla order_by clauses
    """
    clauses = []
    for token in split_fields(sort or ""):
        descending = token.startswith("-")
        attr_name = token.lstrip("-+")
        if column_of(model, attr_name) is None:
            sacrud.log.warning(f"Invalid sort attribute {model.__name__}.{attr_name}")
            continue
        attr = getattr(model, attr_name)
        clauses.append(attr.desc() if descending else attr.asc())
    return clauses
