# catalog_engine/domain/services/category_hierarchy_svc.py
"""
Category tree closure over an immutable, index-based snapshot of the category
store. Each node gets a stable integer index; children are stored as index
tuples. Traversals are iterative with a visited set, so a corrupted (cyclic)
tree raises IntegrityError instead of looping.

The snapshot is rebuilt after `ttl` seconds or on invalidate(); a rebuild
swaps in a new object, readers that already hold the previous one finish on it.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional, Set, Tuple

from catalog_engine.core.errors import IntegrityError, NotFound
from catalog_engine.domain.models.product import Category
from catalog_engine.domain.repositories.base import CategoryStore

logger = logging.getLogger(__name__)

ROOT = -1
DANGLING = -2


@dataclass(frozen=True)
class CategoryTree:
    nodes: Tuple[Category, ...]
    index: Mapping[str, int]
    parent: Tuple[int, ...]                 # ROOT, DANGLING or a node index
    children: Tuple[Tuple[int, ...], ...]
    built_at: float

    @classmethod
    def build(cls, categories: List[Category], built_at: float) -> "CategoryTree":
        nodes = tuple(sorted(categories, key=lambda c: (c.sort_order, c.name, c.category_id)))
        index = {c.category_id: i for i, c in enumerate(nodes)}
        parent: List[int] = []
        children: List[List[int]] = [[] for _ in nodes]
        for i, c in enumerate(nodes):
            if c.parent_id is None:
                parent.append(ROOT)
            elif c.parent_id not in index:
                logger.warning("category tree dangling parent category_id=%s parent_id=%s", c.category_id, c.parent_id)
                parent.append(DANGLING)
            else:
                p = index[c.parent_id]
                parent.append(p)
                children[p].append(i)
        return cls(nodes, index, tuple(parent), tuple(tuple(ch) for ch in children), built_at)

    def idx(self, category_id: str) -> int:
        i = self.index.get(category_id)
        if i is None:
            raise NotFound("category", category_id)
        return i


class CategoryHierarchyResolver:
    def __init__(self, store: CategoryStore, ttl: float = 900.0, clock: Callable[[], float] = time.monotonic):
        self.store = store
        self.ttl = ttl
        self.clock = clock
        self._tree: Optional[CategoryTree] = None
        self._lock = asyncio.Lock()

    # ----- snapshot --------------------------------------------------------------

    async def tree(self) -> CategoryTree:
        tree = self._tree
        if tree is not None and self.clock() - tree.built_at < self.ttl:
            return tree
        async with self._lock:
            tree = self._tree
            if tree is None or self.clock() - tree.built_at >= self.ttl:
                tree = await self.refresh()
        return tree

    async def refresh(self) -> CategoryTree:
        t0 = time.perf_counter()
        categories = await self.store.list_all()
        tree = CategoryTree.build(categories, self.clock())
        self._tree = tree
        logger.info("category tree rebuilt nodes=%s time=%.3fs", len(tree.nodes), time.perf_counter() - t0)
        return tree

    def invalidate(self) -> None:
        self._tree = None

    # ----- queries ---------------------------------------------------------------

    async def get(self, category_id: str) -> Category:
        tree = await self.tree()
        return tree.nodes[tree.idx(category_id)]

    async def descendants(self, category_id: str) -> Set[str]:
        """The node itself plus every descendant reachable through active children."""
        tree = await self.tree()
        start = tree.idx(category_id)
        seen = {start}
        queue = deque([start])
        while queue:
            i = queue.popleft()
            for c in tree.children[i]:
                if not tree.nodes[c].is_active:
                    continue
                if c in seen:
                    logger.error("category cycle detected start=%s at=%s", category_id, tree.nodes[c].category_id)
                    raise IntegrityError(f"category cycle through {tree.nodes[c].category_id}")
                seen.add(c)
                queue.append(c)
        return {tree.nodes[i].category_id for i in seen}

    async def expand(self, category_ids: List[str]) -> List[str]:
        out: Set[str] = set()
        for cid in category_ids:
            out |= await self.descendants(cid)
        return sorted(out)

    async def path_to_root(self, category_id: str) -> List[Category]:
        """Root-first breadcrumb ending with the node itself."""
        tree = await self.tree()
        i = tree.idx(category_id)
        path: List[int] = []
        seen: Set[int] = set()
        while i != ROOT:
            if i == DANGLING:
                logger.error("category path broken category_id=%s", category_id)
                raise IntegrityError(f"category {category_id} has an ancestor with a missing parent")
            if i in seen:
                logger.error("category cycle detected on path category_id=%s", category_id)
                raise IntegrityError(f"category cycle above {category_id}")
            seen.add(i)
            path.append(i)
            i = tree.parent[i]
        return [tree.nodes[j] for j in reversed(path)]

    async def ancestors(self, category_id: str) -> List[str]:
        """Ancestor ids, nearest first, excluding the node itself."""
        path = await self.path_to_root(category_id)
        return [c.category_id for c in reversed(path[:-1])]

    async def children(self, category_id: Optional[str] = None) -> List[Category]:
        """Active children of a node, or the active roots when category_id is None."""
        tree = await self.tree()
        if category_id is None:
            kids = [i for i, p in enumerate(tree.parent) if p == ROOT]
        else:
            kids = list(tree.children[tree.idx(category_id)])
        return [tree.nodes[i] for i in kids if tree.nodes[i].is_active]

    async def rollup(self, direct: Mapping[str, int]) -> Dict[str, int]:
        """
        Per-node totals: own direct count plus the totals of active children,
        i.e. the sum over descendants(node). Nodes unreachable from a root
        (cycles, dangling parents) must not carry counts.
        """
        tree = await self.tree()
        order: List[int] = []
        seen: Set[int] = set()
        queue = deque(i for i, p in enumerate(tree.parent) if p == ROOT)
        while queue:
            i = queue.popleft()
            seen.add(i)
            order.append(i)
            queue.extend(tree.children[i])

        orphaned = [tree.nodes[i].category_id for i in range(len(tree.nodes))
                    if i not in seen and direct.get(tree.nodes[i].category_id)]
        if orphaned:
            logger.error("category rollup over detached nodes=%s", orphaned[:20])
            raise IntegrityError(f"categories not reachable from a root: {', '.join(orphaned[:5])}")

        totals = [0] * len(tree.nodes)
        for i in reversed(order):
            totals[i] += direct.get(tree.nodes[i].category_id, 0)
            p = tree.parent[i]
            if p >= 0 and tree.nodes[i].is_active:
                totals[p] += totals[i]
        return {tree.nodes[i].category_id: totals[i] for i in order}

    # ----- mutation guard ----------------------------------------------------------

    async def check_parent(self, category_id: str, new_parent_id: Optional[str]) -> None:
        """Reject self-reference and re-parenting under one of the node's own descendants."""
        if new_parent_id is None:
            return
        if new_parent_id == category_id:
            raise IntegrityError(f"category {category_id} cannot be its own parent")
        tree = await self.tree()
        i = tree.idx(new_parent_id)
        seen: Set[int] = set()
        while i >= 0:
            if tree.nodes[i].category_id == category_id:
                raise IntegrityError(f"moving {category_id} under {new_parent_id} would create a cycle")
            if i in seen:
                raise IntegrityError(f"category cycle above {new_parent_id}")
            seen.add(i)
            i = tree.parent[i]

    async def save(self, category: Category) -> None:
        """Validated write: checks the parent link, stores, then drops the snapshot."""
        await self.check_parent(category.category_id, category.parent_id)
        await self.store.upsert(category)
        self.invalidate()
        logger.info("category saved category_id=%s parent_id=%s", category.category_id, category.parent_id)
