import uuid
from collections import defaultdict
from collections.abc import Mapping, Sequence
from typing import TypeVar

from storefront.models import Category, CategoryAdminNode, CategoryNode

C = TypeVar("C", bound=Category)
N = TypeVar("N", CategoryNode, CategoryAdminNode)


def _sort_key(node: N) -> tuple[int, str]:
    return (node.sort_order, node.name.lower())


def build_tree(nodes: Sequence[N]) -> list[N]:
    """
    Nest a flat list of categories, ordered by sort_order then name.

    Nodes whose parent is not in ``nodes`` become roots, so a filtered subset
    keeps every match.
    """
    by_parent: dict[uuid.UUID | None, list[N]] = defaultdict(list)
    for node in nodes:
        by_parent[node.parent_id].append(node)
    ids = {node.id for node in nodes}

    def attach(siblings: Sequence[N], seen: frozenset[uuid.UUID]) -> list[N]:
        level = []
        for node in sorted(siblings, key=_sort_key):
            if node.id in seen:
                continue
            children = attach(by_parent.get(node.id, []), seen | {node.id})
            level.append(node.model_copy(update={"children": children}))
        return level

    return attach([n for n in nodes if n.parent_id not in ids], frozenset())


def has_circular_reference(
    category_id: uuid.UUID,
    new_parent_id: uuid.UUID | None,
    parents: Mapping[uuid.UUID, uuid.UUID | None],
) -> bool:
    """
    Whether making ``new_parent_id`` the parent of ``category_id`` closes a loop.

    ``parents`` maps every category id to its current parent id.
    """
    if new_parent_id is None:
        return False
    if new_parent_id == category_id:
        return True

    visited = {category_id}
    current: uuid.UUID | None = new_parent_id
    while current is not None:
        if current in visited:
            return True
        visited.add(current)
        if current not in parents:
            break
        current = parents[current]
    return False


def category_path(category: C, by_id: Mapping[uuid.UUID, C]) -> list[C]:
    """Breadcrumb for ``category``, root first and ending with the category itself."""
    path = [category]
    seen = {category.id}
    parent_id = category.parent_id
    while parent_id is not None and parent_id not in seen:
        parent = by_id.get(parent_id)
        if parent is None:
            break
        path.append(parent)
        seen.add(parent.id)
        parent_id = parent.parent_id
    path.reverse()
    return path
