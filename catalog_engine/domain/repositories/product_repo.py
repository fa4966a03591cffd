# catalog_engine/domain/repositories/product_repo.py

from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter
from contextlib import asynccontextmanager, nullcontext
from typing import Any, AsyncIterator, Dict, Hashable, List, Optional, Sequence, Tuple

from motor.motor_asyncio import AsyncIOMotorClientSession, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, TEXT
from pymongo.collation import Collation
from pymongo.errors import ExecutionTimeout, NetworkTimeout, ServerSelectionTimeoutError

from catalog_engine.core.errors import ComputationTimeout, NotFound
from catalog_engine.core.logging import json_preview
from catalog_engine.domain.models.product import Product, ProductStatus
from catalog_engine.domain.models.search import Page, ProductQuery, SortSpec, TextQuery
from catalog_engine.domain.repositories.base import (GROUP_ATTRIBUTE_TERM, GROUP_BRAND, GROUP_CATEGORY,
                                                     GROUP_STATUS, GROUP_STOCK_STATE, GROUP_TAG, group_values)
from catalog_engine.domain.services.filters import (LOW_STOCK_THRESHOLD_EXPR, TEXT_PATHS, matches_query, to_mql,
                                                    to_search_stage, to_text_stage)
from catalog_engine.domain.services.scoring import sort_products
from catalog_engine.domain.services.text_match import matches_text

logger = logging.getLogger(__name__)

# Driver errors meaning the server or the network gave up on the operation
STORE_TIMEOUTS = (ExecutionTimeout, NetworkTimeout, ServerSelectionTimeoutError)

_STOCK_STATE_EXPR = {
    "$switch": {
        "branches": [
            {"case": {"$lte": ["$stock", 0]}, "then": "out_of_stock"},
            {"case": {"$lte": ["$stock", LOW_STOCK_THRESHOLD_EXPR]}, "then": "low_stock"},
        ],
        "default": "in_stock",
    }
}

# $group stages per grouped field; multi-valued arrays are de-duplicated per product first
_GROUP_STAGES: Dict[str, List[Dict[str, Any]]] = {
    GROUP_CATEGORY: [{"$group": {"_id": "$category_id", "n": {"$sum": 1}}}],
    GROUP_BRAND: [{"$group": {"_id": "$brand_id", "n": {"$sum": 1}}}],
    GROUP_STATUS: [{"$group": {"_id": "$status", "n": {"$sum": 1}}}],
    GROUP_STOCK_STATE: [{"$group": {"_id": _STOCK_STATE_EXPR, "n": {"$sum": 1}}}],
    GROUP_TAG: [
        {"$project": {"v": {"$setUnion": [{"$ifNull": ["$tags", []]}, []]}}},
        {"$unwind": "$v"},
        {"$group": {"_id": "$v", "n": {"$sum": 1}}},
    ],
    GROUP_ATTRIBUTE_TERM: [
        {"$project": {"v": {"$setUnion": [{"$ifNull": ["$attribute_values", []]}, []]}}},
        {"$unwind": "$v"},
        {"$group": {"_id": {"a": "$v.attribute_id", "t": "$v.term_id"}, "n": {"$sum": 1}}},
    ],
}


def _mongo_sort(sort: SortSpec) -> List[Tuple[str, int]]:
    direction = DESCENDING if sort.order == "desc" else ASCENDING
    if sort.sort_by == "price":
        keys = [("price", direction)]
    elif sort.sort_by == "name":
        keys = [("name", direction)]
    elif sort.sort_by == "popularity":
        keys = [("view_count", DESCENDING), ("created_at", DESCENDING)]
    elif sort.sort_by == "rating":
        keys = [("rating_average", DESCENDING), ("review_count", DESCENDING)]
    elif sort.sort_by == "relevance":
        # relevance without a query
        keys = [("featured", DESCENDING), ("stock", DESCENDING), ("created_at", DESCENDING)]
    else:
        keys = [("created_at", direction)]
    return keys + [("product_id", ASCENDING)]


class ProductReader:
    """
    Reads bound to one snapshot session. A client session is not safe for
    concurrent operations, so calls sharing a session are serialized.

    Structured-only queries run entirely in Mongo. A text query selects its
    candidates once per reader (Atlas $search, or a $text pre-filter), capped
    at candidate_limit; the exact match union, the structured filters of each
    facet dimension and relevance then run in-process over that set.
    """

    def __init__(
        self,
        col,
        session: Optional[AsyncIOMotorClientSession] = None,
        *,
        atlas_search: bool = True,
        search_index: str = "catalog_text",
        candidate_limit: int = 1000,
        max_time_ms: Optional[int] = None,
    ):
        self.col = col
        self.session = session
        self.atlas_search = atlas_search
        self.search_index = search_index
        self.candidate_limit = candidate_limit
        self.max_time_ms = max_time_ms
        self._lock = asyncio.Lock()
        self._text_lock = asyncio.Lock()
        self._text_rows: Dict[Tuple[Any, ...], List[Product]] = {}

    def _opts(self) -> Dict[str, Any]:
        return {"maxTimeMS": self.max_time_ms} if self.max_time_ms else {}

    @asynccontextmanager
    async def _call(self, op: str):
        try:
            async with self._lock if self.session is not None else nullcontext():
                yield
        except STORE_TIMEOUTS as e:
            logger.warning("products %s timed out err=%s", op, e)
            raise ComputationTimeout(f"product store {op} timed out") from e

    def _text_pipeline(self, text: TextQuery) -> List[Dict[str, Any]]:
        stage = to_search_stage(text, self.search_index) if self.atlas_search else to_text_stage(text)
        return [stage, {"$limit": self.candidate_limit}, {"$project": {"_id": 0}}]

    async def _text_candidates(self, text: TextQuery) -> List[Product]:
        """Products matching the text, loaded once per reader and shared by every dimension."""
        key = (text.raw, tuple(text.synonyms), text.fuzzy_threshold)
        async with self._text_lock:
            if key in self._text_rows:
                return self._text_rows[key]
            t0 = time.perf_counter()
            pipeline = self._text_pipeline(text)
            logger.debug("products text pipeline=%s", json_preview(pipeline))
            async with self._call("text search"):
                docs = await self.col.aggregate(pipeline, session=self.session, **self._opts()).to_list(length=None)
            if len(docs) >= self.candidate_limit:
                logger.warning("products text candidates capped query=%r limit=%s", text.raw, self.candidate_limit)
            rows = [Product.model_validate(d) for d in docs]
            rows = [p for p in rows if matches_text(p, text, text.fuzzy_threshold)]
            logger.info("products text candidates query=%r fetched=%s matched=%s db_time=%.3fs",
                        text.raw, len(docs), len(rows), time.perf_counter() - t0)
            self._text_rows[key] = rows
            return rows

    async def _matching(self, query: ProductQuery) -> List[Product]:
        rows = await self._text_candidates(query.text)
        return [p for p in rows if matches_query(p, query)]

    async def find(self, query: ProductQuery, sort: SortSpec, page: Page) -> Tuple[List[Product], int]:
        t0 = time.perf_counter()
        if query.text is not None:
            rows = await self._matching(query)
            ordered = sort_products(rows, sort, query.text, query.now)
            logger.info("products find (text) total=%s time=%.3fs", len(rows), time.perf_counter() - t0)
            return ordered[page.offset:page.offset + page.limit], len(rows)

        match = to_mql(query)
        logger.debug("products match=%s", json_preview(match))
        async with self._call("find"):
            total = await self.col.count_documents(match, session=self.session, **self._opts())
            cursor = (
                self.col.find(match, {"_id": 0}, session=self.session, max_time_ms=self.max_time_ms)
                .sort(_mongo_sort(sort))
                .skip(page.offset)
                .limit(page.limit)
            )
            if sort.sort_by == "name":
                cursor = cursor.collation(Collation(locale="en", strength=2))
            docs = await cursor.to_list(length=page.limit)
        logger.info("products find total=%s page=%s db_time=%.3fs", total, len(docs), time.perf_counter() - t0)
        return [Product.model_validate(d) for d in docs], total

    async def count(self, query: ProductQuery) -> int:
        if query.text is not None:
            return len(await self._matching(query))
        async with self._call("count"):
            return await self.col.count_documents(to_mql(query), session=self.session, **self._opts())

    async def group_count(self, query: ProductQuery, field: str) -> Dict[Hashable, int]:
        if query.text is not None:
            counts: Counter = Counter()
            for p in await self._matching(query):
                counts.update(group_values(p, field))
            return dict(counts)

        pipeline = [{"$match": to_mql(query)}, *_GROUP_STAGES[field]]
        logger.debug("products group_count field=%s pipeline=%s", field, json_preview(pipeline))
        async with self._call("group_count"):
            docs = await self.col.aggregate(pipeline, session=self.session, **self._opts()).to_list(length=None)
        out: Dict[Hashable, int] = {}
        for d in docs:
            key = d["_id"]
            if key is None:
                continue
            if isinstance(key, dict):
                key = (key.get("a"), key.get("t"))
            out[key] = d["n"]
        return out


class ProductRepo:
    """
    Product store backed by the 'products' collection. snapshot() opens a
    snapshot-read session (replica set or sharded cluster required); with
    snapshot_reads=False the reader runs without a session.
    """

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        collection_name: str = "products",
        snapshot_reads: bool = True,
        atlas_search: bool = True,
        search_index: str = "catalog_text",
        candidate_limit: int = 1000,
        max_time_ms: Optional[int] = None,
    ):
        self.col = db[collection_name]
        self.client = db.client
        self.snapshot_reads = snapshot_reads
        self.reader_opts = {
            "atlas_search": atlas_search,
            "search_index": search_index,
            "candidate_limit": candidate_limit,
            "max_time_ms": max_time_ms,
        }

    @asynccontextmanager
    async def snapshot(self) -> AsyncIterator[ProductReader]:
        if not self.snapshot_reads:
            yield ProductReader(self.col, **self.reader_opts)
            return
        async with await self.client.start_session(snapshot=True) as session:
            yield ProductReader(self.col, session, **self.reader_opts)

    async def get(self, product_id: str) -> Optional[Product]:
        doc = await self.col.find_one({"product_id": product_id}, {"_id": 0})
        return Product.model_validate(doc) if doc else None

    async def get_by_ids(self, ids: Sequence[str]) -> List[Product]:
        """Products for ids, in the order of ids; unknown ids are skipped."""
        if not ids:
            return []
        docs = await self.col.find({"product_id": {"$in": list(ids)}}, {"_id": 0}).to_list(length=None)
        by_id = {d["product_id"]: Product.model_validate(d) for d in docs}
        return [by_id[i] for i in ids if i in by_id]

    async def iter_active(self) -> AsyncIterator[Product]:
        cursor = self.col.find({"status": ProductStatus.ACTIVE.value}, {"_id": 0}).sort("product_id", ASCENDING)
        async for doc in cursor:
            yield Product.model_validate(doc)

    async def upsert(self, product: Product) -> None:
        doc = product.model_dump(exclude={"stock_state"})
        await self.col.replace_one({"product_id": product.product_id}, doc, upsert=True)

    async def add_tag(self, product_id: str, tag: str) -> bool:
        res = await self.col.update_one(
            {"product_id": product_id, "tags": {"$ne": tag}},
            {"$push": {"tags": tag}},
        )
        if res.modified_count:
            return True
        if not await self.col.count_documents({"product_id": product_id}, limit=1):
            raise NotFound("product", product_id)
        return False

    async def ensure_indexes(self) -> None:
        await self.col.create_index("product_id", unique=True)
        await self.col.create_index([("category_id", ASCENDING), ("status", ASCENDING)])
        await self.col.create_index([("brand_id", ASCENDING), ("status", ASCENDING)])
        await self.col.create_index("tags")
        await self.col.create_index([("created_at", DESCENDING)])
        if not self.reader_opts["atlas_search"]:
            # Atlas Search indexes are managed in Atlas; only the $text fallback needs one here
            await self.col.create_index([(path, TEXT) for path in TEXT_PATHS], name=self.reader_opts["search_index"])
