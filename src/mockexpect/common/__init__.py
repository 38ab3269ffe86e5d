"""
mockexpect Common Utilities

Query string and request body parsing shared by the expectation engine.
"""

from .utils import (
    parse_query_string,
    parse_nested_query,
    parse_body,
    is_text_content,
    content_type_of,
)

__all__ = [
    'parse_query_string',
    'parse_nested_query',
    'parse_body',
    'is_text_content',
    'content_type_of',
]
