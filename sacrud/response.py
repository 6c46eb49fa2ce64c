# Response state shared by the route middleware
from http import HTTPStatus
from typing import Any, Optional
from flask import current_app, Response
from werkzeug.datastructures import Headers
from .document import Document

NO_BODY_STATUS = (HTTPStatus.NO_CONTENT.value, HTTPStatus.NOT_MODIFIED.value)


class ResponseState:
    """
    The status, body and headers set by the middleware,
    converted to a flask response when the middleware chain has finished
    """

    def __init__(self) -> None:
        self.status: int = HTTPStatus.NOT_FOUND.value
        self.body: Any = None
        self.headers = Headers()

    def set(self, header: str, value: Any) -> None:
        """
        Set a response header, replaces the existing values (header names are case insensitive)
        """
        self.headers.set(header, str(value))

    def add(self, header: str, value: Any) -> None:
        """
        Add a header line, keeping the existing ones
        """
        self.headers.add(header, str(value))

    def get(self, header: str) -> Optional[str]:
        return self.headers.get(header)

    def to_response(self) -> Response:
        """
        :return: the flask response
        """
        body = self.body
        if isinstance(body, Document):
            body = body.to_dict()

        if body is None or self.status in NO_BODY_STATUS:
            data = ""
        elif isinstance(body, (str, bytes)):
            data = body
        else:
            data = current_app.json.dumps(body)

        response = current_app.response_class(data, status=self.status)
        for name in set(self.headers.keys()):
            response.headers.setlist(name, self.headers.getlist(name))
        return response
