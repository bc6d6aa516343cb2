"""
Naming convention utilities for entity-rest.

This module converts between the snake_case and camelCase spellings used for
configuration keys and derives the foreign key names an entity is
conventionally referenced by.
"""

import re
from typing import List
import inflect

from ..constants import FieldNames


# Initialize inflect engine for singularization
p = inflect.engine()


def to_snake_case(name: str) -> str:
    """
    Convert camelCase or PascalCase to snake_case.

    Args:
        name: The string to convert to snake_case

    Returns:
        The converted snake_case string

    Example:
        >>> to_snake_case("defaultPageSize")
        'default_page_size'
        >>> to_snake_case("XMLHttpRequest")
        'xml_http_request'
    """
    if not isinstance(name, str):
        raise TypeError(f"Expected string, got {type(name).__name__}")

    name = re.sub("(.)([A-Z][a-z]+)", r"\1_\2", name)
    name = re.sub("__([A-Z])", r"_\1", name)
    name = re.sub("([a-z0-9])([A-Z])", r"\1_\2", name)
    return name.lower()


def to_camel_case(name: str) -> str:
    """
    Convert snake_case to lower camelCase.

    Example:
        >>> to_camel_case("allow_filtering_on")
        'allowFilteringOn'
    """
    head, *rest = name.split('_')
    return head + ''.join(part[:1].upper() + part[1:] for part in rest)


def singularize(word: str) -> str:
    """Return the singular form of ``word``, or ``word`` if already singular."""
    singular = p.singular_noun(word)
    return singular if singular else word


def lower_first(name: str) -> str:
    return name[:1].lower() + name[1:]


def foreign_key_candidates(entity_name: str, table_name: str = None) -> List[str]:
    """
    Foreign key names that conventionally reference an entity.

    For an entity ``Artist`` stored in ``artists`` this yields ``artist_id``,
    ``artistId``, ``artist_key`` and ``artistKey``. Multi-word names produce
    both spellings (``record_label_id`` and ``recordLabelId``).

    Args:
        entity_name: Entity name, usually PascalCase
        table_name: Optional table name, singularized before use

    Returns:
        Ordered, de-duplicated candidate names
    """
    bases = [to_snake_case(entity_name), lower_first(entity_name), entity_name.lower()]
    if table_name:
        bases.append(singularize(to_snake_case(table_name)))

    candidates: List[str] = []
    for base in bases:
        for suffix in FieldNames.FOREIGN_KEY_SUFFIXES:
            candidate = f"{base}{suffix}"
            if candidate not in candidates:
                candidates.append(candidate)
    return candidates
