# Exception Handlers
#
# The application loglevel determines the level of detail shown to the user.
# If set to debug, too much sensitive info might be shown !
#
# ValidationErrors raised while saving a document are caught by the default create/save handlers
# and returned as a 400 response, for example:
# {
#     "error": {
#         "name": "ValidationError",
#         "message": "Validation failed: name: Path `name` is required.",
#         "errors": {"name": {"message": "Path `name` is required.", "path": "name", "kind": "required"}}
#     }
# }
# with an "X-Error-Message: Path `name` is required." header.
#
# All other exceptions are rendered by the flask-restful Api error handler.
#
from http import HTTPStatus
from typing import Dict, Optional
from sqlalchemy.exc import DontWrapMixin
from werkzeug.exceptions import HTTPException
import sacrud


class CrudError(HTTPException, DontWrapMixin):
    """
    Base class of the sacrud exceptions
    """

    code = HTTPStatus.INTERNAL_SERVER_ERROR.value
    message = ""

    def __init__(self, message: str = "", status_code: Optional[int] = None) -> None:
        """
        :param message: Message to be returned in the (json) body
        :param status_code: HTTP Status code
        """
        if status_code is not None:
            self.code = status_code
        self.message = self.message + message
        # extra response headers, eg. to disable caching of the error response
        self.headers: Dict[str, str] = {}
        HTTPException.__init__(self, description=self.message)

    def get_headers(self, environ=None, scope=None):
        return super().get_headers(environ, scope) + list(self.headers.items())

    @property
    def status_code(self) -> int:
        return self.code


class FilterError(CrudError):
    """
    This exception is raised when the query string can't be translated into a query (client side input)
    Always send back the message to the client in the response
    """

    code = HTTPStatus.BAD_REQUEST.value
    message = "Invalid query: "

    def __init__(self, message="", status_code=HTTPStatus.BAD_REQUEST.value):
        sacrud.log.warning("FilterError: %s", message)
        super().__init__(message, status_code)


class ValidationError(CrudError):
    """
    This exception is raised when a document fails validation before it is written
    :param errors: dict mapping the invalid field names to their error messages
    """

    code = HTTPStatus.BAD_REQUEST.value
    message = "Validation failed"
    name = "ValidationError"

    def __init__(self, errors: Dict[str, str], kinds: Optional[Dict[str, str]] = None) -> None:
        self.errors = dict(errors)
        self.kinds = kinds or {}
        details = ", ".join(f"{field}: {msg}" for field, msg in self.errors.items())
        sacrud.log.warning("ValidationError: %s", details)
        super().__init__(f": {details}" if details else "")

    @property
    def messages(self) -> list:
        """
        :return: the error messages of the individual fields
        """
        return list(self.errors.values())

    def to_dict(self) -> dict:
        """
        :return: json serializable error payload
        """
        errors = {
            field: {"message": msg, "path": field, "kind": self.kinds.get(field, "user defined")}
            for field, msg in self.errors.items()
        }
        return {"error": {"name": self.name, "message": self.message, "errors": errors}}
