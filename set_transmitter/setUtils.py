from __future__ import annotations

import json
import re
import typing as t
from urllib.parse import urlsplit

import requests

from set_transmitter.transmitConfig import CONTENT_TYPE_JSON, CONTENT_TYPE_SET, DEFAULT_USER_AGENT

_BASE64URL_SEGMENT = re.compile(r"[A-Za-z0-9_-]+")
_BEARER_PREFIX = "Bearer "


# ------------------------------ Validation -------------------------------

def is_valid_set(jwt: t.Any) -> bool:
    """Structural check only: header.payload.signature, each part base64url."""
    if not isinstance(jwt, str):
        return False
    parts = jwt.split(".")
    if len(parts) != 3:
        return False
    return all(_BASE64URL_SEGMENT.fullmatch(part) for part in parts)


def is_valid_url(url: t.Any) -> bool:
    if not isinstance(url, str):
        return False
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    return parts.scheme in ("http", "https") and bool(parts.netloc)


# ------------------------------- Headers ---------------------------------

def normalize_auth_token(token: str | None) -> str | None:
    if not token:
        return None
    if token.startswith(_BEARER_PREFIX):
        return token
    return f"{_BEARER_PREFIX}{token}"


def merge_headers(
    default_headers: t.Mapping[str, str],
    custom_headers: t.Mapping[str, str] | None = None,
) -> dict[str, str]:
    # exact-name merge; the transport folds case on its own
    return {**default_headers, **(custom_headers or {})}


def build_headers(
    auth_token: str | None = None,
    custom_headers: t.Mapping[str, str] | None = None,
) -> dict[str, str]:
    """
    Outbound headers for a SET POST: protocol defaults, then Authorization,
    then caller overrides (which win on collision).
    """
    headers = {
        "Content-Type": CONTENT_TYPE_SET,
        "Accept": CONTENT_TYPE_JSON,
        "User-Agent": DEFAULT_USER_AGENT,
    }
    authorization = normalize_auth_token(auth_token)
    if authorization:
        headers["Authorization"] = authorization
    return merge_headers(headers, custom_headers)


# ------------------------------- Responses -------------------------------

def parse_response_headers(headers: t.Mapping[str, str]) -> dict[str, str]:
    return {name.lower(): value for name, value in headers.items()}


def parse_response_body(text: str, content_type: str | None, parse_json: bool) -> t.Any:
    """
    Decode a JSON body when asked to and the content type says so.
    Falls back to the raw text; never raises.
    """
    if not parse_json or not text:
        return text
    if not content_type or CONTENT_TYPE_JSON not in content_type:
        return text
    try:
        return json.loads(text)
    except ValueError:
        return text


def decode_body(resp: requests.Response, content: bytes) -> str:
    """
    Decode with the charset the receiver declared, UTF-8 otherwise. requests'
    ISO-8859-1 default for text/* without a charset is not used.
    """
    content_type = resp.headers.get("content-type", "")
    declared = "charset=" in content_type.lower()
    encoding = (resp.encoding if declared else None) or "utf-8"
    try:
        return content.decode(encoding, errors="replace")
    except LookupError:
        return content.decode("utf-8", errors="replace")
