# Configuration settings should be set in app.config
# The SACRUD class variables hold the defaults, environment variables are used as a last resort
import os
import logging
from flask import current_app
import sacrud
from typing import Optional, Union

COUNT_HEADER_STYLES = ("total-count", "split")


def get_config(option: str) -> Optional[Union[bool, int, str]]:
    """Retrieve a configuration parameter
    :param option: configuration parameter
    :return: configuration value

    Lookup order:
    - the flask app config (when running inside an app context)
    - the SACRUD class variable with the same name
    - the environment
    """
    try:
        result = current_app.config[option]
    except (KeyError, RuntimeError):
        result = getattr(sacrud.SACRUD, option, None)
    if result is None:
        result = os.environ.get(option, None)
    return result


def get_count_header_style() -> str:
    """
    :return: the naming scheme of the result count headers, "total-count" or "split"
    """
    style = get_config("COUNT_HEADER_STYLE")
    if style not in COUNT_HEADER_STYLES:
        sacrud.log.warning(f"Invalid COUNT_HEADER_STYLE '{style}', using '{COUNT_HEADER_STYLES[0]}'")
        style = COUNT_HEADER_STYLES[0]
    return style


def is_debug() -> bool:
    """
    We use the loglevel to check whether we're running in debug mode
    :return: whether the app is in debug mode
    :rtype: Boolean
    """
    return sacrud.log.getEffectiveLevel() < logging.INFO
