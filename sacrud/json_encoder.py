# sacrud to json encoding

import datetime
import decimal
from uuid import UUID
from flask.json.provider import DefaultJSONProvider
import sacrud
from .document import Document


class CrudJSONProvider(DefaultJSONProvider):
    """
    Flask JSON encoding for documents and the common column types
    """

    mimetype = "application/json"
    sort_keys = False

    @staticmethod
    def default(obj):
        """
        override the default json encoding
        :param obj: object to be encoded
        :return: encoded/serialized object
        """
        if isinstance(obj, Document):
            return obj.to_dict()
        if isinstance(obj, datetime.timedelta):
            return str(obj)
        if isinstance(obj, datetime.datetime):
            return obj.isoformat()
        if isinstance(obj, (datetime.date, datetime.time)):
            return obj.isoformat()
        if isinstance(obj, set):
            return list(obj)
        if isinstance(obj, UUID):
            return str(obj)
        if isinstance(obj, decimal.Decimal):
            return float(obj)
        if isinstance(obj, bytes):
            if obj == b"":
                return ""
            sacrud.log.debug("CrudJSONProvider: serializing bytes obj")
            return obj.hex()

        sacrud.log.warning(f'JSON Encoding Error: Unknown object type "{type(obj)}" for {obj}')
        raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")
