"""
Tests for the category tree closure: descendants, breadcrumbs, rollup counts
and the cycle guards.
"""
import pytest

from catalog_engine.core.errors import IntegrityError, NotFound
from catalog_engine.domain.models.product import Category
from catalog_engine.domain.repositories.memory import MemoryCategoryStore
from catalog_engine.domain.services.category_hierarchy_svc import CategoryHierarchyResolver


class FakeClock:
    def __init__(self):
        self.t = 0.0

    def __call__(self) -> float:
        return self.t


@pytest.fixture
def cyclic():
    # a <-> b never reaches a root
    return CategoryHierarchyResolver(MemoryCategoryStore([
        Category(category_id="root", name="Root"),
        Category(category_id="a", name="A", parent_id="b"),
        Category(category_id="b", name="B", parent_id="a"),
    ]))


class TestDescendants:
    @pytest.mark.asyncio
    async def test_includes_self_and_active_descendants(self, resolver):
        assert await resolver.descendants("electronics") == {"electronics", "headphones", "wireless"}

    @pytest.mark.asyncio
    async def test_leaf_is_its_own_closure(self, resolver):
        assert await resolver.descendants("wireless") == {"wireless"}

    @pytest.mark.asyncio
    async def test_inactive_start_node_is_still_included(self, resolver):
        assert await resolver.descendants("legacy") == {"legacy"}

    @pytest.mark.asyncio
    async def test_unknown_category(self, resolver):
        with pytest.raises(NotFound):
            await resolver.descendants("nope")

    @pytest.mark.asyncio
    async def test_cycle_raises_instead_of_looping(self, cyclic):
        with pytest.raises(IntegrityError):
            await cyclic.descendants("a")

    @pytest.mark.asyncio
    async def test_expand_unions_and_sorts(self, resolver):
        assert await resolver.expand(["wireless", "home"]) == ["home", "wireless"]


class TestPathToRoot:
    @pytest.mark.asyncio
    async def test_root_first_breadcrumb(self, resolver):
        path = await resolver.path_to_root("wireless")
        assert [c.category_id for c in path] == ["electronics", "headphones", "wireless"]

    @pytest.mark.asyncio
    async def test_ancestors_nearest_first(self, resolver):
        assert await resolver.ancestors("wireless") == ["headphones", "electronics"]

    @pytest.mark.asyncio
    async def test_cycle(self, cyclic):
        with pytest.raises(IntegrityError):
            await cyclic.path_to_root("a")

    @pytest.mark.asyncio
    async def test_dangling_parent(self):
        resolver = CategoryHierarchyResolver(MemoryCategoryStore([
            Category(category_id="orphan", name="Orphan", parent_id="gone"),
        ]))
        with pytest.raises(IntegrityError):
            await resolver.path_to_root("orphan")


class TestChildren:
    @pytest.mark.asyncio
    async def test_roots(self, resolver):
        roots = await resolver.children()
        assert {c.category_id for c in roots} == {"electronics", "home"}

    @pytest.mark.asyncio
    async def test_inactive_children_hidden(self, resolver):
        kids = await resolver.children("electronics")
        assert [c.category_id for c in kids] == ["headphones"]


class TestRollup:
    @pytest.mark.asyncio
    async def test_parent_totals_sum_active_descendants(self, resolver):
        totals = await resolver.rollup({"wireless": 2, "headphones": 1, "legacy": 7, "home": 4})
        assert totals["wireless"] == 2
        assert totals["headphones"] == 3
        # legacy is inactive: its products do not roll up into electronics
        assert totals["electronics"] == 3
        assert totals["home"] == 4

    @pytest.mark.asyncio
    async def test_rollup_equals_descendant_sum(self, resolver):
        direct = {"electronics": 1, "headphones": 2, "wireless": 3}
        totals = await resolver.rollup(direct)
        for cid in ("electronics", "headphones", "wireless"):
            assert totals[cid] == sum(direct.get(d, 0) for d in await resolver.descendants(cid))

    @pytest.mark.asyncio
    async def test_counts_on_detached_nodes(self, cyclic):
        with pytest.raises(IntegrityError):
            await cyclic.rollup({"a": 1})


class TestMutationGuard:
    @pytest.mark.asyncio
    async def test_self_parent(self, resolver):
        with pytest.raises(IntegrityError):
            await resolver.check_parent("headphones", "headphones")

    @pytest.mark.asyncio
    async def test_move_under_own_descendant(self, resolver):
        with pytest.raises(IntegrityError):
            await resolver.check_parent("electronics", "wireless")

    @pytest.mark.asyncio
    async def test_valid_move(self, resolver):
        await resolver.check_parent("wireless", "home")

    @pytest.mark.asyncio
    async def test_save_invalidates_snapshot(self, resolver):
        assert await resolver.descendants("home") == {"home"}
        await resolver.save(Category(category_id="kitchen", name="Kitchen", parent_id="home"))
        assert await resolver.descendants("home") == {"home", "kitchen"}

    @pytest.mark.asyncio
    async def test_rejected_save_writes_nothing(self, resolver, categories):
        with pytest.raises(IntegrityError):
            await resolver.save(Category(category_id="electronics", name="Electronics", parent_id="wireless"))
        assert (await categories.get_node("electronics")).parent_id is None


class TestSnapshot:
    @pytest.mark.asyncio
    async def test_snapshot_reused_until_ttl(self, categories):
        clock = FakeClock()
        resolver = CategoryHierarchyResolver(categories, ttl=60, clock=clock)
        first = await resolver.tree()
        await categories.upsert(Category(category_id="garden", name="Garden"))
        assert await resolver.tree() is first

        clock.t = 61
        rebuilt = await resolver.tree()
        assert rebuilt is not first
        assert "garden" in rebuilt.index
