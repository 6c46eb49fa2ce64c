"""
Hidden fields are model attributes that are never exposed to the client:
they are removed from the responses, from the request bodies and from the query filters.

An attribute is hidden when
- it's declared with `info={"hidden": True}`, eg. `secret = db.Column(db.String, info={"hidden": True})`
- its key (or one of its dotted path segments) starts with an underscore

`info={"hidden": False}` exposes an attribute regardless of its name.
Primary key columns are always exposed.
"""
import re
from typing import Any, Iterable, List, Optional
from sqlalchemy import inspect
from sqlalchemy.exc import NoInspectionAvailable
from sqlalchemy.orm import ColumnProperty, RelationshipProperty

HIDDEN_FIELDS = "__sacrud_hidden__"
HIDDEN_PATH = re.compile(r"(^_|\._)")
LOGICAL_OPERATORS = ("$or", "$and", "$nor")
SEPARATORS = " ,\t\r\n"


def get_mapper(model):
    """
    :param model: sqla model class
    :return: the sqla mapper or None if `model` isn't mapped
    """
    try:
        return inspect(model)
    except NoInspectionAvailable:
        return None


def primary_keys(model) -> List[str]:
    """
    :return: the attribute keys of the model primary key columns
    """
    mapper = get_mapper(model)
    if mapper is None:
        return []
    return [mapper.get_property_by_column(col).key for col in mapper.primary_key]


def _is_hidden(prop) -> Optional[bool]:
    """
    :return: the explicit "hidden" flag of the property (True/False) or None when it isn't set
    """
    info = {}
    if isinstance(prop, ColumnProperty):
        for column in prop.columns:
            info.update(getattr(column, "info", {}))
    info.update(prop.info)
    hidden = info.get("hidden")
    return None if hidden is None else bool(hidden)


def get_hidden_fields(model) -> List[str]:
    """
    Extract the hidden fields from a model, the result is cached on the model class
    :param model: sqla model class
    :return: list of hidden attribute keys
    """
    cached = getattr(model, "__dict__", {}).get(HIDDEN_FIELDS)
    if cached is not None:
        return cached

    hidden = []
    mapper = get_mapper(model)
    if mapper is not None:
        pks = primary_keys(model)
        for prop in mapper.attrs:
            if not isinstance(prop, (ColumnProperty, RelationshipProperty)):
                continue
            if prop.key in pks:
                continue
            flag = _is_hidden(prop)
            if flag is False:
                continue
            if flag is True or HIDDEN_PATH.search(prop.key):
                hidden.append(prop.key)
        setattr(model, HIDDEN_FIELDS, hidden)

    return hidden


def default_select(model) -> str:
    """
    :return: select string that excludes all the hidden fields of the model, eg. "-password -_secret"
    """
    return " ".join(f"-{field}" for field in get_hidden_fields(model))


def split_fields(value: str) -> List[str]:
    """
    Split a field list on whitespace and commas, commas inside [] brackets are kept,
    eg. "name -age related[name,test]" => ["name", "-age", "related[name,test]"]
    """
    tokens = []
    current = []
    depth = 0
    for char in value:
        if char == "[":
            depth += 1
        elif char == "]":
            depth = max(depth - 1, 0)
        if char in SEPARATORS and depth == 0:
            if current:
                tokens.append("".join(current))
            current = []
            continue
        current.append(char)
    if current:
        tokens.append("".join(current))
    return tokens


def bare_name(token: str) -> str:
    """
    :return: the field name of a select/sort/populate token, eg. "-related:sub[name]" => "related"
    """
    return re.split(r"[:\[]", token.lstrip("-"), maxsplit=1)[0]


def omit_str(value: Any, fields: Optional[Iterable[str]]) -> Optional[str]:
    """
    Remove the fields from a space/comma separated field string
    :param value: field string, eg. "name -hidden"
    :param fields: field names to remove
    :return: the remaining tokens joined by a space or None when value isn't a string
    """
    if not isinstance(value, str):
        return None
    if not fields:
        return value
    fields = set(fields)
    return " ".join(token for token in split_fields(value) if bare_name(token) not in fields)


def _omit_path(obj: dict, path: List[str]) -> None:
    key, rest = path[0], path[1:]
    if not rest:
        obj.pop(key, None)
        return
    child = obj.get(key)
    if isinstance(child, dict):
        _omit_path(child, rest)
    elif isinstance(child, list):
        for item in child:
            if isinstance(item, dict):
                _omit_path(item, rest)


def omit_obj(obj: Any, fields: Optional[Iterable[str]]):
    """
    Remove the fields from a dict or from all the dicts in a list (in place)
    Dotted field paths remove the fields from the nested dicts
    :param obj: dict or list of dicts
    :param fields: field names/paths to remove
    :return: obj
    """
    if not fields:
        return obj
    if isinstance(obj, list):
        for item in obj:
            omit_obj(item, fields)
        return obj
    if not isinstance(obj, dict):
        return obj
    for field in fields:
        _omit_path(obj, field.split("."))
    return obj


def omit_query(query: Any, fields: Optional[Iterable[str]]):
    """
    Remove the fields from a mongo style filter dict, including the nested logical clauses
    :param query: filter dict, eg. {"name": "x", "$or": [{"hidden": 1}, {"test": "true"}]}
    :param fields: field names to remove
    :return: query
    """
    if isinstance(query, list):
        for item in query:
            omit_query(item, fields)
        return query
    if not isinstance(query, dict):
        return query
    for operator in LOGICAL_OPERATORS:
        if operator in query:
            omit_query(query[operator], fields)
    if "$not" in query:
        omit_query(query["$not"], fields)
    return omit_obj(query, fields)
