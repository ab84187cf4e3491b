"""Cookie parsing for per-request provider credentials."""

import json
from typing import Any, Dict, Optional
from urllib.parse import unquote

from streamforge.chat.models import Credentials
from streamforge.utils.logger import logger

API_KEYS_COOKIE = "apiKeys"
PROVIDERS_COOKIE = "providers"


def parse_cookies(header: Optional[str]) -> Dict[str, str]:
    """Split a Cookie header into a name -> decoded value map."""
    cookies: Dict[str, str] = {}
    if not header:
        return cookies
    for item in header.split(";"):
        name, separator, value = item.strip().partition("=")
        if not separator or not name:
            continue
        cookies[name.strip()] = unquote(value.strip())
    return cookies


def _json_map(cookies: Dict[str, str], name: str) -> Dict[str, Any]:
    raw = cookies.get(name)
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except ValueError as e:
        logger.warning(f"Ignoring malformed '{name}' cookie: {e}")
        return {}
    if not isinstance(value, dict):
        logger.warning(f"Ignoring '{name}' cookie: expected a JSON object")
        return {}
    return value


def parse_credentials(header: Optional[str]) -> Credentials:
    """
    Read API keys and provider settings from the Cookie header.

    Malformed cookies degrade to empty maps; they never fail the request.
    """
    cookies = parse_cookies(header)
    api_keys = {str(key): str(value) for key, value in _json_map(cookies, API_KEYS_COOKIE).items() if value}
    provider_settings = {
        str(key): value
        for key, value in _json_map(cookies, PROVIDERS_COOKIE).items()
        if isinstance(value, dict)
    }
    return Credentials(api_keys=api_keys, provider_settings=provider_settings)
