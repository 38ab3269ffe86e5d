"""
mockexpect Common Utilities

Parsing helpers standing in for the body/query parsing layer of the HTTP
server: the flat querystring grammar used by expectations, the nested
(bracket) grammar used for incoming queries and forms, and content-type aware
body decoding.
"""

import json
import re
from typing import Any, Dict, List, Optional, Tuple, Union
from urllib.parse import parse_qsl

from ..mock.errors import BodyParseError


# Matches one "[segment]" of a bracketed query key such as a[b][]
_BRACKET_SEGMENT = re.compile(r'\[([^\[\]]*)\]')

FORM_CONTENT_TYPE = 'application/x-www-form-urlencoded'


def _add_value(target: Dict[str, Any], key: str, value: Any):
    """Store value under key, turning repeated keys into a list."""
    if key not in target:
        target[key] = value
    elif isinstance(target[key], list):
        target[key].append(value)
    else:
        target[key] = [target[key], value]


def parse_query_string(qs: Union[str, bytes, None]) -> Dict[str, Any]:
    """
    Parse a query string with the flat querystring grammar.

    Keys are never nested; repeated keys collect into a list and keys without
    a value map to an empty string.

    Args:
        qs: Query string, with or without a leading '?'

    Returns:
        Mapping of key to string (or list of strings)

    Example:
        parse_query_string('a=1&a=2&b')  # {'a': ['1', '2'], 'b': ''}
    """
    if not qs:
        return {}
    if isinstance(qs, bytes):
        qs = qs.decode('utf-8', errors='replace')
    if qs.startswith('?'):
        qs = qs[1:]

    result: Dict[str, Any] = {}
    for key, value in parse_qsl(qs, keep_blank_values=True):
        _add_value(result, key, value)
    return result


def _split_key(key: str) -> Tuple[str, List[str]]:
    """Split 'a[b][c]' into ('a', ['b', 'c'])."""
    root, bracket, rest = key.partition('[')
    if not bracket or not root:
        return key, []

    rest = '[' + rest
    segments = _BRACKET_SEGMENT.findall(rest)
    # Anything that is not a clean run of [segments] stays a literal key
    if ''.join(f'[{s}]' for s in segments) != rest:
        return key, []
    return root, segments


def parse_nested_query(qs: Union[str, bytes, None]) -> Dict[str, Any]:
    """
    Parse a query string supporting bracket nesting.

    'user[name]=bob' becomes {'user': {'name': 'bob'}} and 'ids[]=1&ids[]=2'
    becomes {'ids': ['1', '2']}. Plain repeated keys collect into a list.

    Args:
        qs: Query string or urlencoded form body

    Returns:
        Nested mapping of string values
    """
    if not qs:
        return {}
    if isinstance(qs, bytes):
        qs = qs.decode('utf-8', errors='replace')
    if qs.startswith('?'):
        qs = qs[1:]

    result: Dict[str, Any] = {}
    for key, value in parse_qsl(qs, keep_blank_values=True):
        root, segments = _split_key(key)
        if not segments:
            _add_value(result, root, value)
            continue

        node = result
        path = [root] + segments
        for index, segment in enumerate(path[:-1]):
            following = path[index + 1]
            if following == '':
                # name[] appends to a list held by the parent
                existing = node.get(segment)
                if not isinstance(existing, list):
                    existing = [] if existing is None else [existing]
                    node[segment] = existing
                existing.append(value)
                break
            child = node.get(segment)
            if not isinstance(child, dict):
                child = {}
                node[segment] = child
            node = child
        else:
            _add_value(node, path[-1], value)

    return result


def content_type_of(headers: Dict[str, str]) -> str:
    """Return the bare, lower-cased media type from a header mapping."""
    raw = headers.get('content-type', '') or ''
    return raw.split(';', 1)[0].strip().lower()


def is_text_content(content_type: str) -> bool:
    """True for text/* media types, which are delivered as raw text."""
    return content_type.startswith('text/')


def _is_json_content(content_type: str) -> bool:
    return content_type == 'application/json' or content_type.endswith('+json')


def parse_body(content_type: str, raw: bytes) -> Tuple[Any, Optional[str]]:
    """
    Decode a request body according to its content type.

    Args:
        content_type: Bare media type (see content_type_of)
        raw: Raw body bytes

    Returns:
        Tuple of (parsed body, raw text). Raw text is only set for text/*
        requests; the parsed body defaults to an empty mapping when the
        content type is not understood.

    Raises:
        BodyParseError: If a JSON body cannot be decoded
    """
    if is_text_content(content_type):
        return {}, raw.decode('utf-8', errors='replace')

    if not raw:
        return {}, None

    if _is_json_content(content_type):
        try:
            return json.loads(raw), None
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise BodyParseError(f"Invalid JSON body: {e}") from e

    if content_type == FORM_CONTENT_TYPE:
        return parse_nested_query(raw), None

    return {}, None
