# flask_restful API subclass exposing the CRUD routes of sqla models
from functools import wraps
from typing import Any, Callable, Dict, List, Optional
from flask import request
from flask.app import Flask
from flask_restful import Api, Resource
import sacrud
from .config import get_config, is_debug
from .crud_init import SACRUD
from .defaults import DEFAULT_HANDLERS
from .errors import CrudError
from .hidden import get_mapper
from .query import NO_CACHE_HEADERS, QueryOptions, make_init
from .response import ResponseState

# sentinel that is replaced by the default handler in a method table
DEFAULT = "default"

# operation => (route, http methods)
COLLECTION_OPERATIONS = {"find": ["GET"], "create": ["POST"]}
INSTANCE_OPERATIONS = {"findById": ["GET"], "save": ["PUT", "PATCH"], "remove": ["DELETE"]}
OPERATIONS = list(COLLECTION_OPERATIONS) + list(INSTANCE_OPERATIONS)


class Context:
    """
    Request context passed to the route middleware
    :param model: exposed sqla model
    :param session: sqla session
    :param req: flask request
    :param params: url path parameters
    """

    def __init__(self, model, session, req, params: Dict[str, Any]) -> None:
        self.model = model
        self.session = session
        self.request = req
        self.method = req.method
        self.params = dict(params)
        self.object_id = self.params.get(get_config("OBJECT_ID"))
        self.query = req.query
        self.body = req.get_body()
        self.options = QueryOptions()
        self.res = ResponseState()


def run_chain(ctx: Context, handlers: List[Callable]):
    """
    Invoke the handlers in order, every handler receives a `next` callable that invokes the next handler
    :param ctx: request context
    :param handlers: list of handlers, called as handler(ctx, next)
    :return: the result of the first handler
    """
    last_index = -1

    def dispatch(index: int):
        nonlocal last_index
        if index <= last_index:
            raise RuntimeError("next() called multiple times")
        last_index = index
        if index == len(handlers):
            return None
        handler = handlers[index]
        return handler(ctx, lambda: dispatch(index + 1))

    return dispatch(0)


def resolve_handlers(operation: str, handlers: Any) -> List[Callable]:
    """
    Replace the DEFAULT sentinel with the default handler of the operation
    :param operation: find, findById, create, save or remove
    :param handlers: handler, DEFAULT or a list of these
    :return: list of handlers
    """
    stack = list(handlers) if isinstance(handlers, (list, tuple)) else [handlers]
    result = []
    for handler in stack:
        if isinstance(handler, str) and handler == DEFAULT:
            handler = DEFAULT_HANDLERS[operation]
        if not callable(handler):
            raise TypeError(f"sacrud: invalid {operation} handler {handler!r}")
        result.append(handler)
    return result


def http_method_decorator(fun: Callable) -> Callable:
    """Decorator for the exposed HTTP methods
    - commit the database when the response has been created
    - rollback when an exception occurs, the exception is handled by the flask-restful Api
    - sacrud error responses aren't cached either

    :param fun: bound resource method
    :return: wrapped fun
    """

    @wraps(fun)
    def method_wrapper(*args, **kwargs):
        session = fun.__self__.db.session
        try:
            result = fun(*args, **kwargs)
            session.commit()
            return result
        except Exception as exc:
            if is_debug():
                sacrud.log.exception(exc)
            sacrud.log.warning(f"Rolling back {request.method} {request.path}: {exc!r}")
            session.rollback()
            if isinstance(exc, CrudError):
                exc.headers.update(NO_CACHE_HEADERS)
            raise

    return method_wrapper


class CrudResource(Resource):
    """
    Flask webservice wrapper for an exposed model
    The `chains` class variable maps the lowercase http methods to the middleware chains,
    the http method functions are added by `CrudAPI.expose_object`
    """

    model = None
    db = None
    chains: Dict[str, List[Callable]] = {}
    method_decorators = [http_method_decorator]

    def dispatch_chain(self, http_method: str, **kwargs):
        """
        Run the middleware chain of the http method and create the response
        """
        ctx = Context(self.model, self.db.session, request, kwargs)
        run_chain(ctx, self.chains[http_method])
        return ctx.res.to_response()


def _make_http_method(http_method: str) -> Callable:
    def method(self, **kwargs):
        return self.dispatch_chain(http_method, **kwargs)

    method.__name__ = http_method
    return method


class CrudAPI(Api):
    """
    Subclass of the flask_restful Api class where we add the expose_object method,
    this method creates the CRUD routes for a sqla model
    """

    def __init__(self, app: Flask, app_db=None, prefix: str = "", **kwargs) -> None:
        """
        :param app: flask app
        :param app_db: flask_sqlalchemy.SQLAlchemy instance, defaults to the one registered on the app
        :param prefix: url prefix of the routes
        :param kwargs: flask_restful Api keyword arguments
        """
        self.crud = SACRUD(app, app_db=app_db)
        self.db = self.crud.db
        super().__init__(app, prefix=prefix, **kwargs)

    def expose_object(self, model, methods: Dict[str, Any], path: Optional[str] = None) -> None:
        """Create the routes for a model
        :param model: sqla model class
        :param methods: method table: operation name => False, DEFAULT, a handler or a list of handlers
        :param path: collection path, defaults to "/" + the model table name

        Collection routes: GET => find, POST => create
        Instance routes (path + "/<_id>"): GET => findById, PUT/PATCH => save, DELETE => remove
        Operations that are absent or falsy aren't exposed
        """
        mapper = get_mapper(model)
        if mapper is None:
            raise TypeError(f"sacrud: {model!r} must be a sqlalchemy model.")

        unknown = [operation for operation in methods if operation not in OPERATIONS]
        if unknown:
            raise ValueError(f"sacrud: unknown operations {unknown}, valid operations are {OPERATIONS}")

        if path is None:
            path = "/" + getattr(model, "__tablename__", model.__name__)
        instance_url = get_config("INSTANCE_URL_FMT").format(path, get_config("OBJECT_ID"))

        init = make_init(model)
        chains = {
            operation: [init] + resolve_handlers(operation, handlers)
            for operation, handlers in methods.items()
            if handlers
        }

        api_class_name = f"{model.__name__}_API"  # name for dynamically generated classes
        endpoint = f"{model.__name__}:{path}"
        self._expose_resource(model, path, api_class_name, endpoint, COLLECTION_OPERATIONS, chains)
        self._expose_resource(model, instance_url, api_class_name + "_i", endpoint + ":instance", INSTANCE_OPERATIONS, chains)

    def _expose_resource(self, model, url, api_class_name, endpoint, operations: Dict[str, List[str]], chains) -> None:
        """
        Create a CrudResource subclass for the enabled operations and add it to the api
        """
        properties = {"model": model, "db": self.db, "chains": {}}
        for operation, http_methods in operations.items():
            if operation not in chains:
                continue
            for http_method in http_methods:
                name = http_method.lower()
                properties["chains"][name] = chains[operation]
                properties[name] = _make_http_method(name)

        if not properties["chains"]:
            return

        http_methods = [name.upper() for name in properties["chains"]]
        api_class = type(api_class_name, (CrudResource,), properties)
        sacrud.log.info(f"Exposing {model.__name__} on {url}, methods: {http_methods}")
        self.add_resource(api_class, url, endpoint=endpoint, methods=http_methods)
