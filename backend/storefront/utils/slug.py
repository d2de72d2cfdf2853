import re
import secrets
import string
from collections.abc import Callable

from storefront.models import SLUG_PATTERN

SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


def generate_slug(text: str) -> str:
    """
    Turn free text into a URL slug.

    >>> generate_slug("Nike Air Max 90")
    'nike-air-max-90'
    >>> generate_slug("Product with SPECIAL chars!")
    'product-with-special-chars'
    """
    slug = text.lower().strip()
    slug = re.sub(r"[\s_]+", "-", slug)
    slug = re.sub(r"[^a-z0-9-]+", "", slug)
    slug = re.sub(r"-{2,}", "-", slug)
    return slug.strip("-")


def random_suffix(length: int = 6) -> str:
    return "".join(secrets.choice(SUFFIX_ALPHABET) for _ in range(length))


def unique_slug(base: str, is_taken: Callable[[str], bool], max_length: int = 100) -> str:
    """
    Return ``base`` or, when taken, ``base`` with a random 6-character suffix.

    ``base`` is only shortened to make room for the suffix.
    """
    candidate = base[:max_length].rstrip("-") or random_suffix()
    stem = candidate[: max_length - 7].rstrip("-")
    while is_taken(candidate):
        candidate = f"{stem}-{random_suffix()}" if stem else random_suffix()
    return candidate


def is_valid_slug(slug: str) -> bool:
    return bool(SLUG_PATTERN.match(slug))
