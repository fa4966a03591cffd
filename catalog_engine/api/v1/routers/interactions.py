# catalog_engine/api/v1/routers/interactions.py
import logging

from fastapi import APIRouter, Depends

from catalog_engine.api.deps import Engines, get_engines
from catalog_engine.api.v1.schemas.requests import InteractionIn, TagIn, TagOut
from catalog_engine.domain.models.reco import Interaction
from catalog_engine.domain.services import interaction_svc

logger = logging.getLogger(__name__)

router = APIRouter(tags=["interactions"])


@router.post("/interactions", response_model=Interaction, status_code=201)
async def record_interaction(body: InteractionIn, engines: Engines = Depends(get_engines)):
    return await interaction_svc.record_interaction(
        engines.products,
        engines.interactions,
        product_id=body.product_id,
        type=body.type,
        user_id=body.user_id,
        session_id=body.session_id,
        order_id=body.order_id,
    )


@router.post("/products/{product_id}/tags", response_model=TagOut)
async def add_product_tag(product_id: str, body: TagIn, engines: Engines = Depends(get_engines)):
    added = await interaction_svc.add_tag(engines.products, product_id, body.tag, strict=body.strict)
    return TagOut(product_id=product_id, tag=body.tag, added=added)
