"""
Request parsing

The query string is translated into a mongo style filter dict (request.query):
    ?name=x                     => {"name": "x"}
    ?name=x&name=y              => {"name": ["x", "y"]}
    ?age[$gte]=18               => {"age": {"$gte": "18"}}
    ?$or=[{"name":"x"},{"name":"y"}]  => {"$or": [{"name": "x"}, {"name": "y"}]}

The $skip, $limit, $sort, $select and $populate operators are kept as strings,
they're removed from the filter by the route init step.
"""

import json
import re
from flask import Request
from .errors import FilterError

# filter values of these operators are json documents
JSON_OPERATORS = ("$or", "$and", "$nor", "$not")
OPERATOR_ARG = re.compile(r"^([^\[\]]+)\[(\$\w+)\]$")


def parse_query_args(args) -> dict:
    """
    :param args: werkzeug MultiDict holding the query string arguments
    :return: mutable filter dict
    """
    query = {}
    for arg, values in args.lists():
        value = values[0] if len(values) == 1 else values

        if arg in JSON_OPERATORS:
            try:
                query[arg] = json.loads(value) if isinstance(value, str) else [json.loads(v) for v in value]
            except json.JSONDecodeError as exc:
                raise FilterError(f"{arg} should be a json document ({exc})")
            continue

        operator_arg = OPERATOR_ARG.match(arg)
        if operator_arg:
            attr_name, operator = operator_arg.groups()
            condition = query.get(attr_name)
            if not isinstance(condition, dict):
                condition = query[attr_name] = {} if condition is None else {"$eq": condition}
            condition[operator] = value
            continue

        if isinstance(query.get(arg), dict):
            query[arg]["$eq"] = value
        else:
            query[arg] = value

    return query


# pylint: disable=too-many-ancestors
class CrudRequest(Request):
    """
    Parse the request arguments:
    - query args: the filter dict and the $ operators
    - body: json payload
    """

    _query = None

    @property
    def query(self) -> dict:
        """
        :return: the filter dict parsed from the query string, it's created once per request
        and it may be modified by the middleware
        """
        if self._query is None:
            self._query = parse_query_args(self.args)
        return self._query

    def get_body(self):
        """
        :return: the parsed json body, an empty dict if there's no (valid) json body
        """
        if self.method in ("GET", "HEAD", "OPTIONS", "DELETE"):
            return {}
        result = self.get_json(silent=True)
        if result is None:
            return {}
        return result
