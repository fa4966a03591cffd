# catalog_engine/api/v1/routers/categories.py
from typing import Optional

from fastapi import APIRouter, Depends, Query

from catalog_engine.api.deps import category_resolver
from catalog_engine.domain.services.category_hierarchy_svc import CategoryHierarchyResolver

router = APIRouter(prefix="/categories", tags=["categories"])


@router.get("")
async def list_children(
    parent_id: Optional[str] = Query(None, description="Omit for root categories"),
    resolver: CategoryHierarchyResolver = Depends(category_resolver),
):
    children = await resolver.children(parent_id)
    return {"parent_id": parent_id, "items": [c.model_dump() for c in children], "count": len(children)}


@router.get("/{category_id}/descendants")
async def descendants(category_id: str, resolver: CategoryHierarchyResolver = Depends(category_resolver)):
    ids = sorted(await resolver.descendants(category_id))
    return {"category_id": category_id, "items": ids, "count": len(ids)}


@router.get("/{category_id}/path")
async def path(category_id: str, resolver: CategoryHierarchyResolver = Depends(category_resolver)):
    """Root-first breadcrumb down to the category itself."""
    nodes = await resolver.path_to_root(category_id)
    return {"category_id": category_id, "items": [c.model_dump() for c in nodes]}
