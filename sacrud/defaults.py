"""
Default route handlers

Every handler takes the request context and a `next` callable that runs the rest of the middleware chain.
The write handlers put a Document in the response body before calling `next`,
it is persisted afterwards unless the next middleware replaced the body.
"""
from http import HTTPStatus
from .config import get_count_header_style
from .document import Document, get_instance, select_fields, to_plain
from .errors import ValidationError
from .hidden import omit_obj, primary_keys
from .populate import populate
from .query import compile_filter, compile_sort


def set_count_headers(ctx, count: int) -> None:
    """
    Report the number of matching documents
    """
    res = ctx.res
    if get_count_header_style() == "split":
        res.set("X-Total-Results", count)
        res.set("X-Max-Results", ctx.options.limit or count)
    else:
        res.set("X-Total-Count", count)


def handle_validation_error(ctx, exc: ValidationError) -> None:
    """
    Send the validation error to the client
    """
    ctx.session.rollback()
    res = ctx.res
    # Set "Bad Request" error status
    res.status = HTTPStatus.BAD_REQUEST.value
    # One X-Error-Message header per invalid field
    res.headers.remove("X-Error-Message")
    for message in exc.messages:
        res.add("X-Error-Message", message)
    res.body = exc.to_dict()


def _can(body, capability: str) -> bool:
    return body is not None and callable(getattr(body, capability, None))


def find(ctx, next):
    """
    Default handler for GET requests
    """
    model = ctx.model
    options = ctx.options
    res = ctx.res

    query = ctx.session.query(model).filter(compile_filter(model, ctx.query))
    count = query.order_by(None).count()

    order = compile_sort(model, options.sort) + [getattr(model, pk).asc() for pk in primary_keys(model)]
    query = query.order_by(*order).offset(options.skip).limit(options.limit)
    fields = select_fields(model, options.select)
    docs = [to_plain(instance, fields) for instance in query]

    set_count_headers(ctx, count)
    res.status = HTTPStatus.OK.value
    res.body = docs

    if docs and options.populate:
        populate(ctx.session, model, docs, options.populate)

    return next()


def find_by_id(ctx, next):
    """
    Default handler for GET/id requests
    """
    model = ctx.model
    options = ctx.options
    res = ctx.res

    instance = get_instance(ctx.session, model, ctx.object_id)
    not_found = instance is None
    doc = None if not_found else to_plain(instance, select_fields(model, options.select))

    res.body = doc
    res.status = HTTPStatus.NO_CONTENT.value if not_found else HTTPStatus.OK.value
    set_count_headers(ctx, 0 if not_found else 1)

    if doc is not None and options.populate:
        populate(ctx.session, model, doc, options.populate)

    return next()


def create(ctx, next):
    """
    Default handler for POST requests
    """
    res = ctx.res

    res.body = Document.build(ctx.session, ctx.model, ctx.body)
    res.status = HTTPStatus.CREATED.value

    result = next()
    if not _can(res.body, "save"):
        return result
    try:
        doc = res.body.save()
        res.body = omit_obj(doc.to_dict(), ctx.options.hidden)
    except ValidationError as exc:
        handle_validation_error(ctx, exc)
    return result


def save(ctx, next):
    """
    Default handler for PUT/PATCH requests
    PUT replaces the document, PATCH only updates the fields in the request body
    """
    model = ctx.model
    res = ctx.res

    instance = get_instance(ctx.session, model, ctx.object_id)
    if instance is None:
        res.body = None
        res.status = HTTPStatus.NO_CONTENT.value
        return None

    doc = Document(instance, ctx.session, select_fields(model, ctx.options.select))
    try:
        if ctx.method == "PUT":
            doc.overwrite(ctx.body)
        else:
            doc.assign(ctx.body)
        doc.validate()
        ctx.session.flush()

        res.body = doc
        res.status = HTTPStatus.OK.value

        result = next()
        if _can(res.body, "save"):
            res.body = omit_obj(res.body.save().to_dict(), ctx.options.hidden)
        return result
    except ValidationError as exc:
        handle_validation_error(ctx, exc)
    return None


def remove(ctx, next):
    """
    Default handler for DELETE requests
    """
    model = ctx.model
    res = ctx.res

    instance = get_instance(ctx.session, model, ctx.object_id)
    if instance is None:
        res.body = None
        res.status = HTTPStatus.NO_CONTENT.value
        return None

    res.body = Document(instance, ctx.session, select_fields(model, ctx.options.select))
    res.status = HTTPStatus.OK.value

    result = next()
    if _can(res.body, "remove"):
        res.body.remove()
    return result


DEFAULT_HANDLERS = {
    "find": find,
    "findById": find_by_id,
    "create": create,
    "save": save,
    "remove": remove,
}
