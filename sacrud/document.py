"""
Document helpers: conversion of sqla instances to plain ("lean") dicts,
field selection, value casting, validation and persistence.

A `Document` wraps an instance together with the session it belongs to.
The default route handlers put a Document in the response body so the next middleware
can inspect or modify it before it's persisted with `save()` or deleted with `remove()`.
Middleware that replaces the body with something else (eg. a dict) cancels the write.
"""
import datetime
import decimal
from typing import Any, Dict, List, Optional
from sqlalchemy import inspect
import sacrud
from .errors import ValidationError
from .hidden import get_hidden_fields, get_mapper, primary_keys, split_fields

TRUE_STRINGS = ("true", "1", "yes", "on")
FALSE_STRINGS = ("false", "0", "no", "off", "")


def cast_value(column, value: Any) -> Any:
    """
    Cast a (json or query string) value to the python type of a column
    :param column: sqla Column
    :param value: value to cast
    :return: casted value
    :raises: ValueError, TypeError when the value can't be cast
    """
    if value is None:
        return None
    try:
        python_type = column.type.python_type
    except NotImplementedError:
        return value

    if python_type is bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.lower() in TRUE_STRINGS + FALSE_STRINGS:
            return value.lower() in TRUE_STRINGS
        if isinstance(value, (int, float)):
            return bool(value)
        raise ValueError(f"Invalid boolean {value!r}")

    if isinstance(value, python_type) and not isinstance(value, bool):
        return value
    if isinstance(value, (dict, list)):
        raise TypeError(f"Invalid {python_type.__name__} {value!r}")
    if python_type is int:
        if isinstance(value, float) and not value.is_integer():
            raise ValueError(f"Invalid integer {value!r}")
        return int(value)
    if python_type is float:
        return float(value)
    if python_type is decimal.Decimal:
        try:
            return decimal.Decimal(str(value))
        except decimal.InvalidOperation:
            raise ValueError(f"Invalid decimal {value!r}")
    if python_type is str:
        return str(value)
    if python_type in (datetime.datetime, datetime.date, datetime.time) and isinstance(value, str):
        return python_type.fromisoformat(value)
    return value


def column_of(model, key: str):
    """
    :return: the sqla Column mapped to the attribute `key` or None
    """
    mapper = get_mapper(model)
    prop = mapper.column_attrs.get(key) if mapper is not None else None
    return prop.columns[0] if prop is not None else None


def writable_fields(model) -> List[str]:
    """
    :return: the column attributes that may be written by the client
    """
    mapper = get_mapper(model)
    protected = set(get_hidden_fields(model)) | set(primary_keys(model))
    return [prop.key for prop in mapper.column_attrs if prop.key not in protected]


def select_fields(model, select: Optional[str] = None) -> List[str]:
    """
    Translate a select string into the list of attribute keys to return
    - "name test": inclusion, the primary key is always included unless it's excluded explicitly
    - "-name": exclusion
    Hidden fields are never selected
    :param model: sqla model class
    :param select: select string
    :return: list of column attribute keys
    """
    mapper = get_mapper(model)
    keys = [prop.key for prop in mapper.column_attrs]
    includes = []
    excludes = set()
    for token in split_fields(select or ""):
        if token.startswith("-"):
            excludes.add(token[1:])
        else:
            includes.append(token.lstrip("+"))

    if includes:
        wanted = set(includes) | set(primary_keys(model))
        keys = [key for key in keys if key in wanted]

    hidden = set(get_hidden_fields(model))
    return [key for key in keys if key not in excludes and key not in hidden]


def to_plain(instance, fields: Optional[List[str]] = None) -> Dict[str, Any]:
    """
    :param instance: sqla instance
    :param fields: attribute keys to include, defaults to all visible columns
    :return: "lean" dict representation of the instance
    """
    if fields is None:
        fields = select_fields(type(instance))
    return {key: getattr(instance, key) for key in fields}


def coerce_id(model, object_id: Any):
    """
    Cast the url object id to the primary key type, composite keys are separated by commas
    :return: the identity or None when it's invalid
    """
    mapper = get_mapper(model)
    columns = list(mapper.primary_key)
    values = str(object_id).split(",") if len(columns) > 1 else [object_id]
    if len(values) != len(columns):
        return None
    try:
        ident = tuple(cast_value(col, val) for col, val in zip(columns, values))
    except (ValueError, TypeError):
        sacrud.log.debug(f"Invalid {model.__name__} id {object_id}")
        return None
    return ident[0] if len(ident) == 1 else ident


def get_instance(session, model, object_id: Any):
    """
    :return: the instance with the given id or None if it doesn't exist
    """
    ident = coerce_id(model, object_id)
    if ident is None:
        return None
    return session.get(model, ident)


def column_default(column) -> Any:
    """
    :return: the python side scalar default of a column, None otherwise
    """
    default = column.default
    if default is not None and getattr(default, "is_scalar", False):
        return default.arg
    return None


class Document:
    """
    sqla instance wrapper exposing the save/remove capabilities,
    attribute access is proxied to the instance
    """

    _attrs = ("_instance", "_session", "_fields", "_errors", "_kinds")

    def __init__(self, instance, session, fields: Optional[List[str]] = None) -> None:
        object.__setattr__(self, "_instance", instance)
        object.__setattr__(self, "_session", session)
        object.__setattr__(self, "_fields", fields)
        object.__setattr__(self, "_errors", {})
        object.__setattr__(self, "_kinds", {})

    @classmethod
    def build(cls, session, model, data: Dict[str, Any]) -> "Document":
        """
        Create a new (unsaved) document, unknown and protected fields are ignored
        """
        document = cls(model(), session)
        document.assign(data)
        return document

    @property
    def model(self):
        return type(self._instance)

    def __getattr__(self, name):
        if name in self._attrs:
            raise AttributeError(name)
        return getattr(self._instance, name)

    def __setattr__(self, name, value):
        if name in self._attrs:
            object.__setattr__(self, name, value)
        else:
            setattr(self._instance, name, value)

    def __repr__(self):
        return f"<Document {self._instance!r}>"

    def _set_error(self, key: str, message: str, kind: str) -> None:
        self._errors[key] = message
        self._kinds[key] = kind

    def assign(self, data: Dict[str, Any]) -> "Document":
        """
        Assign the writable fields in `data` to the instance,
        failures are recorded and raised as a ValidationError by `validate()`
        """
        if not isinstance(data, dict):
            sacrud.log.warning(f"Invalid document data {data!r}")
            return self
        writable = writable_fields(self.model)
        for key, value in data.items():
            if key not in writable:
                sacrud.log.debug(f"Ignoring {self.model.__name__}.{key}")
                continue
            try:
                value = cast_value(column_of(self.model, key), value)
            except (ValueError, TypeError):
                self._set_error(key, f'Cast to {self.model.__name__}.{key} failed for value "{value}"', "CastError")
                continue
            try:
                setattr(self._instance, key, value)
            except (ValueError, TypeError, AssertionError) as exc:
                self._set_error(key, str(exc) or f"Validator failed for path `{key}`", "user defined")
        return self

    def overwrite(self, data: Dict[str, Any]) -> "Document":
        """
        Replace all writable fields, the fields missing from `data` are reset to their default
        Hidden fields are left untouched
        """
        values = {}
        for key in writable_fields(self.model):
            if isinstance(data, dict) and key in data:
                values[key] = data[key]
            else:
                values[key] = column_default(column_of(self.model, key))
        return self.assign(values)

    def validate(self) -> None:
        """
        :raises: ValidationError when a field couldn't be assigned or a required field is missing
        """
        state = inspect(self._instance)
        mapper = get_mapper(self.model)
        for prop in mapper.column_attrs:
            column = prop.columns[0]
            if prop.key in self._errors or column.primary_key or column.nullable:
                continue
            has_default = column.default is not None or column.server_default is not None
            if has_default and prop.key not in state.dict:
                continue
            if getattr(self._instance, prop.key) is None:
                self._set_error(prop.key, f"Path `{prop.key}` is required.", "required")

        if self._errors:
            raise ValidationError(self._errors, self._kinds)

    def save(self) -> "Document":
        """
        Validate and write the document
        """
        self.validate()
        self._session.add(self._instance)
        self._session.flush()
        return self

    def remove(self) -> "Document":
        """
        Delete the document
        """
        self._session.delete(self._instance)
        self._session.flush()
        return self

    def to_dict(self, fields: Optional[List[str]] = None) -> Dict[str, Any]:
        """
        :return: lean representation of the document without hidden fields
        """
        return to_plain(self._instance, fields or self._fields)
