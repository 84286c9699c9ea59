# token_extractor.py
import logging
import re
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from field_extractor import extract_field, is_missing
from models import TokenExtractionResult

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "

# Common paths where tokens are typically found in API responses, tried in order.
COMMON_TOKEN_PATHS = (
    "access_token",
    "token",
    "jwt",
    "auth_token",
    "bearer_token",
    "id_token",
    "data.access_token",
    "data.token",
    "data.jwt",
    "data.auth_token",
    "data.accessToken",
    "result.access_token",
    "result.token",
    "result.jwt",
    "response.access_token",
    "response.token",
    "body.access_token",
    "body.token",
    "accessToken",
    "authToken",
    "idToken",
)

PRIORITY_TOKEN_KEYS = (
    "access_token",
    "token",
    "jwt",
    "auth_token",
    "bearer_token",
    "id_token",
    "accessToken",
    "authToken",
)

JWT_REGEX = re.compile(r"^[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+$")
GENERIC_TOKEN_REGEX = re.compile(r"^[A-Za-z0-9_.\-]+$")
MIN_GENERIC_TOKEN_LENGTH = 20
MIN_BEARER_STRING_LENGTH = 30


class JsonKind(str, Enum):
    OBJECT = "object"
    ARRAY = "array"
    STRING = "string"
    NUMBER = "number"
    BOOL = "bool"
    NULL = "null"


def json_kind(value: Any) -> JsonKind:
    """Tags a parsed JSON value. bool is checked before number since bool subclasses int."""
    if value is None:
        return JsonKind.NULL
    if isinstance(value, bool):
        return JsonKind.BOOL
    if isinstance(value, (int, float)):
        return JsonKind.NUMBER
    if isinstance(value, str):
        return JsonKind.STRING
    if isinstance(value, list):
        return JsonKind.ARRAY
    if isinstance(value, dict):
        return JsonKind.OBJECT
    raise TypeError(f"Not a JSON value: {type(value).__name__}")


def strip_bearer(token: str) -> str:
    """Removes a leading 'Bearer ' (any case) so the stored token is the bare credential."""
    token = token.strip()
    if token.lower().startswith(BEARER_PREFIX.lower()):
        return token[len(BEARER_PREFIX):].strip()
    return token


def build_auth_header(token: str) -> str:
    """Header value with exactly one 'Bearer ' prefix, whatever form the token was stored in."""
    return f"{BEARER_PREFIX}{strip_bearer(token)}"


def is_token_like(value: str) -> bool:
    """
    Heuristic token shape check:
      - JWT: three base64url segments separated by dots
      - generic: only [A-Za-z0-9_.-] and at least 20 characters
      - 'Bearer ...' strings longer than 30 characters, or whose credential part is token-shaped
    """
    if not value:
        return False
    if JWT_REGEX.match(value):
        return True
    if GENERIC_TOKEN_REGEX.match(value) and len(value) >= MIN_GENERIC_TOKEN_LENGTH:
        return True
    if value.lower().startswith(BEARER_PREFIX.lower()):
        credential = value[len(BEARER_PREFIX):].strip()
        return len(value) > MIN_BEARER_STRING_LENGTH or bool(credential and is_token_like(credential))
    return False


Found = Optional[Tuple[str, str]]


class _TokenSearch:
    """
    Recursive visitor over tagged JSON values.

    Pass one looks for priority key names holding token-like strings at every
    nesting level; pass two accepts any token-like string leaf. First match wins.
    """

    def __init__(self, priority_pass: bool):
        self.priority_pass = priority_pass
        self._visitors: Dict[JsonKind, Callable[[Any, str], Found]] = {
            JsonKind.OBJECT: self._visit_object,
            JsonKind.ARRAY: self._visit_array,
            JsonKind.STRING: self._visit_string,
            JsonKind.NUMBER: self._visit_scalar,
            JsonKind.BOOL: self._visit_scalar,
            JsonKind.NULL: self._visit_scalar,
        }

    def visit(self, value: Any, path: str = "") -> Found:
        return self._visitors[json_kind(value)](value, path)

    def _visit_object(self, value: Dict[str, Any], path: str) -> Found:
        if self.priority_pass:
            for key in PRIORITY_TOKEN_KEYS:
                candidate = value.get(key)
                if isinstance(candidate, str) and is_token_like(candidate):
                    return candidate, _join(path, key)
        for key, child in value.items():
            found = self.visit(child, _join(path, key))
            if found:
                return found
        return None

    def _visit_array(self, value: list, path: str) -> Found:
        for index, child in enumerate(value):
            found = self.visit(child, f"{path}[{index}]")
            if found:
                return found
        return None

    def _visit_string(self, value: str, path: str) -> Found:
        if not self.priority_pass and is_token_like(value):
            return value, path
        return None

    def _visit_scalar(self, value: Any, path: str) -> Found:
        return None


def _join(path: str, key: str) -> str:
    return f"{path}.{key}" if path else key


class TokenExtractor:
    """
    Finds an authentication token in an API response of unknown shape.

    Strategies, first match wins:
      1. the planner-provided token path
      2. common token locations
      3. recursive search (priority key names, then any token-shaped string)
    """

    def extract_token(self, response_data: Any, token_path: Optional[str] = None) -> TokenExtractionResult:
        if not isinstance(response_data, (dict, list)):
            return TokenExtractionResult(success=False, error="Invalid response data: expected an object")

        if token_path:
            token = extract_field(response_data, token_path)
            if not is_missing(token) and isinstance(token, str) and token.strip():
                logger.info(f"Token extracted using provided path: {token_path}")
                return TokenExtractionResult(success=True, token=strip_bearer(token), token_path=token_path)
            logger.debug(f"Provided token path '{token_path}' did not yield a string; trying common paths.")

        for path in COMMON_TOKEN_PATHS:
            token = extract_field(response_data, path)
            if not is_missing(token) and isinstance(token, str) and token.strip():
                logger.info(f"Token extracted using common path: {path}")
                return TokenExtractionResult(success=True, token=strip_bearer(token), token_path=path)

        try:
            found = _TokenSearch(priority_pass=True).visit(response_data) or _TokenSearch(priority_pass=False).visit(response_data)
        except TypeError as e:
            logger.error(f"Token search aborted on non-JSON value: {e}")
            return TokenExtractionResult(success=False, error=f"Token extraction failed: {e}")

        if found:
            token, path = found
            logger.info(f"Token found through recursive search at '{path}'")
            return TokenExtractionResult(success=True, token=strip_bearer(token), token_path=path)

        return TokenExtractionResult(success=False, error="Could not find authentication token in response")


token_extractor = TokenExtractor()
