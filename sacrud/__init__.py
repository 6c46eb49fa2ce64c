# flake8: noqa: F401
#
# REST CRUD routes (find/findById/create/save/remove) generated for sqlalchemy models
#
from .crud_init import log, SACRUD
from .errors import CrudError, ValidationError, FilterError
from .document import Document
from .populate import PopulateOptions
from .query import QueryOptions
from .api import CrudAPI, Context, DEFAULT
from .defaults import find, find_by_id, create, save, remove
from .__about__ import __version__, __description__

__all__ = (
    "__version__",
    "__description__",
    #
    "CrudAPI",
    "Context",
    "DEFAULT",
    "SACRUD",
    # documents
    "Document",
    "QueryOptions",
    "PopulateOptions",
    # default handlers
    "find",
    "find_by_id",
    "create",
    "save",
    "remove",
    # Errors:
    "CrudError",
    "ValidationError",
    "FilterError",
)
