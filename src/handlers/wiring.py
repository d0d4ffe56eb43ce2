"""Build services from settings. Handlers cache what these return."""

from typing import Optional

from config.settings import Settings
from repositories.store import DerivedStore, create_store_engine
from services.context_builder import ContextBuilder
from services.event_processor import EventProcessor
from services.knowledge_search import KnowledgeSearchService
from utils.cache_service import LRUCache


def build_store(settings: Settings) -> DerivedStore:
    store = DerivedStore(create_store_engine(settings))
    store.create_schema()
    return store


def build_processor(settings: Settings, store: Optional[DerivedStore] = None) -> EventProcessor:
    return EventProcessor(store or build_store(settings), settings)


def build_context_builder(
    settings: Settings, store: Optional[DerivedStore] = None
) -> ContextBuilder:
    knowledge_search = None
    if settings.knowledge_base_id:
        knowledge_search = KnowledgeSearchService(
            settings.knowledge_base_id,
            region=settings.aws_region,
            cache=LRUCache(
                max_size=settings.cache_max_size, ttl_seconds=settings.cache_ttl_seconds
            ),
        )
    return ContextBuilder(store or build_store(settings), knowledge_search=knowledge_search)
