import logging
import os
import sys
from flask import Flask
import flask.app
from .request import CrudRequest
from .json_encoder import CrudJSONProvider


class SACRUD:
    """This class configures the Flask application to serve the generated CRUD routes
    :param app: a Flask application.
    :param app_db: the flask_sqlalchemy.SQLAlchemy instance, defaults to the one registered on the app
    """

    # Configuration settings are stored as class variables, app.config takes precedence
    # "total-count" => X-Total-Count, "split" => X-Total-Results + X-Max-Results
    COUNT_HEADER_STYLE = "total-count"
    # name of the url path parameter holding the object id
    OBJECT_ID = "_id"
    # first argument is the collection path (eg. /tests), the second one the OBJECT_ID (=> /tests/<_id>)
    # the api prefix is prepended by flask_restful
    INSTANCE_URL_FMT = "{}/<{}>"
    LOGLEVEL = logging.WARNING

    def __init__(self, app: flask.app.Flask, *args, **kwargs) -> None:
        """
        Constructor
        """
        self.app = app
        self.db = None
        if app is not None:
            self.init_app(app, *args, **kwargs)

    def init_app(self, app: flask.app.Flask, app_db=None, **kwargs) -> None:
        """
        Application initialization
        """
        if not isinstance(app, Flask):  # pragma: no cover
            raise TypeError("'app' should be Flask.")

        if app_db is None:
            app_db = app.extensions["sqlalchemy"]

        self.db = app_db

        app.request_class = CrudRequest
        app.json = CrudJSONProvider(app)
        app.url_map.strict_slashes = False

        if app.config.get("DEBUG", False):
            log.setLevel(logging.DEBUG)

        for conf_name, conf_val in kwargs.items():
            setattr(SACRUD, conf_name, conf_val)

        # pylint: disable=unused-argument,unused-variable
        @app.teardown_appcontext
        def shutdown_session(exception=None):
            """cfr. https://flask.palletsprojects.com/en/latest/patterns/sqlalchemy/"""
            self.db.session.remove()

    @staticmethod
    def init_logging(loglevel: int = logging.WARNING) -> logging.Logger:
        """
        Specify the log format used in the webserver logs
        The webserver will catch stderr so we redirect eveything to sys.stderr
        """
        log = logging.getLogger("sacrud")
        if log.level == logging.NOTSET:
            handler = logging.StreamHandler(sys.stderr)
            formatter = logging.Formatter("[%(asctime)s] %(levelname)s: %(message)s")
            handler.setFormatter(formatter)
            log.setLevel(loglevel)
            log.addHandler(handler)
        return log


#
# logging initialization
#
try:
    DEBUG = os.getenv("DEBUG", SACRUD.LOGLEVEL)
    LOGLEVEL = int(DEBUG)
except ValueError:  # pragma: no cover
    print(f'Invalid LogLevel in DEBUG Environment Variable! "{DEBUG}"')
    LOGLEVEL = logging.INFO

log = SACRUD.init_logging(LOGLEVEL)
