import logging
from typing import Optional

from catalog_engine.core.errors import DuplicateAssociation, NotFound
from catalog_engine.domain.models.product import utcnow
from catalog_engine.domain.models.reco import Interaction, InteractionType
from catalog_engine.domain.repositories.base import InteractionLogStore, ProductStore
from catalog_engine.domain.services.recommendation_svc import interaction_weight

logger = logging.getLogger(__name__)


async def record_interaction(
    products: ProductStore,
    interactions: InteractionLogStore,
    *,
    product_id: str,
    type: InteractionType,
    user_id: Optional[str] = None,
    session_id: Optional[str] = None,
    order_id: Optional[str] = None,
) -> Interaction:
    """Append one interaction, weighted by its type."""
    if await products.get(product_id) is None:
        raise NotFound("product", product_id)
    interaction = Interaction(
        product_id=product_id,
        type=type,
        weight=interaction_weight(type),
        user_id=user_id,
        session_id=session_id,
        order_id=order_id,
        created_at=utcnow(),
    )
    await interactions.append(interaction)
    logger.debug("interaction recorded product_id=%s type=%s user_id=%s order_id=%s",
                 product_id, type.value, user_id, order_id)
    return interaction


async def add_tag(products: ProductStore, product_id: str, tag: str, strict: bool = False) -> bool:
    """
    Attach a tag to a product. Re-adding an existing tag is a no-op returning
    False, or DuplicateAssociation when strict is set.
    """
    added = await products.add_tag(product_id, tag)
    if not added and strict:
        raise DuplicateAssociation(f"product {product_id}", tag)
    logger.info("add_tag product_id=%s tag=%s added=%s", product_id, tag, added)
    return added
