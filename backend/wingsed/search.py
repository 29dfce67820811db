"""Typesense-backed full-text search over the university catalogue.

`TypesenseService` owns the `universities` collection: it (re)creates the
schema, upserts rows from the database and runs filtered searches. Search
errors are re-raised; the HTTP layer decides how to degrade.
"""

import logging
import math
from functools import lru_cache
from typing import Optional

import typesense
from typesense.exceptions import ObjectNotFound
from sqlmodel import Session

from . import repositories
from .config import settings

logger = logging.getLogger("wingsed.search")

COLLECTION = "universities"

UNIVERSITY_SCHEMA = {
    "name": COLLECTION,
    "fields": [
        {"name": "id", "type": "string"},
        {"name": "name", "type": "string"},
        {"name": "country", "type": "string", "facet": True},
        {"name": "city", "type": "string"},
        {"name": "tuitionFee", "type": "int32"},
        {"name": "publicPrivate", "type": "string", "facet": True},
        {"name": "description", "type": "string", "optional": True},
    ],
    "default_sorting_field": "tuitionFee",
}

_HIT_FIELDS = ("id", "name", "country", "city", "tuitionFee", "publicPrivate", "description")


def build_filter(country: Optional[str] = None, budget_min: Optional[int] = None,
                 budget_max: Optional[int] = None) -> Optional[str]:
    """Translate search filters into a Typesense `filter_by` expression."""
    filters = []
    if country:
        filters.append(f"country:=`{country}`")
    if budget_min is not None and budget_max is not None:
        filters.append(f"tuitionFee:[{budget_min}..{budget_max}]")
    elif budget_min is not None:
        filters.append(f"tuitionFee:>={budget_min}")
    elif budget_max is not None:
        filters.append(f"tuitionFee:<={budget_max}")
    return " && ".join(filters) or None


class TypesenseService:
    def __init__(self, client: Optional[typesense.Client] = None):
        self.client = client or typesense.Client({
            "nodes": [{
                "host": settings.TYPESENSE_HOST,
                "port": settings.TYPESENSE_PORT,
                "protocol": settings.TYPESENSE_PROTOCOL,
            }],
            "api_key": settings.TYPESENSE_API_KEY,
            "connection_timeout_seconds": 5,
        })

    @property
    def collection(self):
        return self.client.collections[COLLECTION]

    def create_collection(self) -> None:
        """Drop any existing collection and create it from `UNIVERSITY_SCHEMA`."""
        try:
            self.collection.delete()
        except ObjectNotFound:
            pass
        self.client.collections.create(UNIVERSITY_SCHEMA)
        logger.info("created typesense collection %s", COLLECTION)

    def sync_universities(self, session: Session) -> int:
        """Upsert every university row into the index and return the count."""
        documents = [
            {
                "id": u.id,
                "name": u.name,
                "country": u.country,
                "city": u.city,
                "tuitionFee": u.tuition_fee,
                "publicPrivate": u.public_private,
                "description": u.description or "",
            }
            for u in repositories.UniversityRepository(session).list_all()
        ]
        if documents:
            self.collection.documents.import_(documents, {"action": "upsert"})
        logger.info("synced %d universities to typesense", len(documents))
        return len(documents)

    def search(self, query: Optional[str] = None, country: Optional[str] = None,
               budget_min: Optional[int] = None, budget_max: Optional[int] = None,
               page: int = 1, page_size: int = 12) -> dict:
        """Search the index; returns `{hits, total, page, totalPages}`.

        Results are sorted by tuition fee, cheapest first. Any client or
        transport error propagates to the caller.
        """
        params = {
            "q": query or "*",
            "query_by": "name,city,description",
            "page": page,
            "per_page": page_size,
            "sort_by": "tuitionFee:asc",
        }
        filter_by = build_filter(country, budget_min, budget_max)
        if filter_by:
            params["filter_by"] = filter_by
        result = self.collection.documents.search(params)
        found = result.get("found", 0) or 0
        hits = [
            {key: hit["document"].get(key) for key in _HIT_FIELDS}
            for hit in result.get("hits", [])
        ]
        return {
            "hits": hits,
            "total": found,
            "page": page,
            "totalPages": math.ceil(found / page_size),
        }

    def clear_collection(self) -> None:
        try:
            self.collection.delete()
            logger.info("deleted typesense collection %s", COLLECTION)
        except ObjectNotFound:
            logger.info("typesense collection %s does not exist", COLLECTION)


@lru_cache(maxsize=1)
def get_search_service() -> TypesenseService:
    return TypesenseService()
