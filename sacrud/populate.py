"""
$populate: replace relationships with the (lean) related documents

Syntax: `path[,path...]` where each path is `relationship[:nested_populate][[select fields]]`, eg.
    ?$populate=author[name]           => {"author": {"id": 1, "name": "..."}}
    ?$populate=author:books[title]    => {"author": {..., "books": [{"id": 2, "title": "..."}]}}

Paths that aren't relationships of the model, or whose target can't be resolved, are ignored.
The select lists and the nested paths are scrubbed of the hidden fields of the related model.
"""
import re
from dataclasses import dataclass
from typing import Any, List, Optional
from sqlalchemy import inspect, tuple_
from sqlalchemy.exc import ArgumentError, InvalidRequestError
from sqlalchemy.orm import selectinload
import sacrud
from .document import select_fields, to_plain
from .hidden import default_select, get_hidden_fields, get_mapper, omit_str, primary_keys, split_fields

POP_SELECT = re.compile(r"\[([^\]]*)\]")
# relationships loaded by selectinload, the other loader strategies can't be combined with it
EAGER_LOADABLE = ("select", "joined", "subquery", "selectin")


@dataclass
class PopulateOptions:
    """
    One relationship hop of a $populate string
    """

    path: str
    model: Any
    select: Optional[str] = None
    populate: Optional[List["PopulateOptions"]] = None
    lean: bool = True


def resolve_relationship(model, path: str):
    """
    :return: the sqla relationship property called `path` or None
    """
    try:
        rel = inspect(model).relationships.get(path)
        if rel is None:
            sacrud.log.debug(f"Can't populate {model.__name__}.{path}: not a relationship")
            return None
        # resolves the relationship target
        rel.mapper
    except (InvalidRequestError, ArgumentError) as exc:
        sacrud.log.debug(f"Can't populate {model.__name__}.{path}: {exc}")
        return None
    return rel


def parse_populate(model, paths: Optional[str]) -> Optional[List[PopulateOptions]]:
    """
    Parse a populate string into a list of PopulateOptions
    :param model: the model that's being populated
    :param paths: populate string, with the hidden fields of `model` removed
    :return: list of PopulateOptions
    """
    if get_mapper(model) is None or not isinstance(paths, str):
        return None

    result = []
    for token in split_fields(paths):
        path, _, nested = token.partition(":")
        select = None
        match = POP_SELECT.search(path)
        if match:
            select = match.group(1)
            path = POP_SELECT.sub("", path, count=1)

        rel = resolve_relationship(model, path)
        if rel is None:
            continue

        target = rel.mapper.class_
        hidden = get_hidden_fields(target)
        options = PopulateOptions(
            path=rel.key,
            model=target,
            select=omit_str(select, hidden) or default_select(target),
            populate=parse_populate(target, omit_str(nested, hidden) if nested else None),
        )
        result.append(options)

    return result


def _identity(doc: dict, pks: List[str]):
    if not all(pk in doc for pk in pks):
        return None
    return tuple(doc[pk] for pk in pks)


def _load_parents(session, model, pks: List[str], idents: list, rel):
    """
    :return: dict mapping the identities to the instances, with the relationship loaded
    """
    query = session.query(model)
    if rel.lazy in EAGER_LOADABLE:
        query = query.options(selectinload(getattr(model, rel.key)))
    if len(pks) == 1:
        query = query.filter(getattr(model, pks[0]).in_([ident[0] for ident in idents]))
    else:
        query = query.filter(tuple_(*[getattr(model, pk) for pk in pks]).in_(idents))
    return {tuple(getattr(instance, pk) for pk in pks): instance for instance in query}


def populate(session, model, docs: Any, options: Optional[List[PopulateOptions]]):
    """
    Populate lean documents in place
    :param session: sqla session
    :param model: model of the documents
    :param docs: lean document dict or list of dicts
    :param options: parsed PopulateOptions
    :return: docs
    """
    if not docs or not options:
        return docs

    items = docs if isinstance(docs, list) else [docs]
    pks = primary_keys(model)
    idents = [_identity(item, pks) for item in items]
    if not any(idents):
        sacrud.log.debug(f"Can't populate {model.__name__} documents without primary key")
        return docs

    for opt in options:
        rel = inspect(model).relationships[opt.path]
        parents = _load_parents(session, model, pks, [ident for ident in idents if ident], rel)
        fields = select_fields(opt.model, opt.select)
        populated = []
        for item, ident in zip(items, idents):
            parent = parents.get(ident)
            if parent is None:
                continue
            related = getattr(parent, opt.path)
            if rel.uselist:
                value = [to_plain(instance, fields) for instance in related]
                populated.extend(value)
            elif related is not None:
                value = to_plain(related, fields)
                populated.append(value)
            else:
                value = None
            item[opt.path] = value

        if opt.populate and populated:
            populate(session, opt.model, populated, opt.populate)

    return docs
