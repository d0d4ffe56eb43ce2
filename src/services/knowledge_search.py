"""
Read-only client for the knowledge/rules search store.

Backed by an Amazon Bedrock Knowledge Base. Results are filtered by a
``scope`` metadata key so a customer's notes and shared rule sets can live
in the same index. This service never writes.
"""

from __future__ import annotations

import hashlib
from typing import List, Optional

import boto3

from models.knowledge import KBQuery, KBResult
from utils.cache_service import LRUCache
from utils.logging_config import get_logger

logger = get_logger(__name__)


class KnowledgeSearchService:
    """Search the knowledge store with a small in-memory cache."""

    def __init__(
        self,
        knowledge_base_id: str,
        region: Optional[str] = None,
        cache: Optional[LRUCache] = None,
        client=None,
    ):
        self.knowledge_base_id = knowledge_base_id
        self.client = client or boto3.client("bedrock-agent-runtime", region_name=region)
        self.cache = cache or LRUCache(max_size=100, ttl_seconds=300)

    def search_knowledge(self, scope: str, query: str, limit: int = 3) -> List[KBResult]:
        """Return up to ``limit`` results for ``query`` within ``scope``."""
        return self.search(KBQuery(scope=scope, query=query, limit=limit))

    def search(self, request: KBQuery) -> List[KBResult]:
        cache_key = self._cache_key(request)
        cached = self.cache.get(cache_key)
        if cached is not None:
            logger.info("Knowledge cache hit", extra={"query_hash": cache_key[:8]})
            return cached

        try:
            response = self.client.retrieve(
                knowledgeBaseId=self.knowledge_base_id,
                retrievalQuery={"text": request.query},
                retrievalConfiguration={
                    "vectorSearchConfiguration": {
                        "numberOfResults": request.limit,
                        "filter": {"equals": {"key": "scope", "value": request.scope}},
                    }
                },
            )
        except Exception as exc:
            logger.error(
                "Knowledge search failed",
                extra={"scope": request.scope, "error": str(exc)},
            )
            return []

        results: List[KBResult] = []
        for item in response.get("retrievalResults", []):
            score = item.get("score", 0)
            if score < request.min_score:
                continue
            results.append(
                KBResult(
                    content=item.get("content", {}).get("text", ""),
                    score=score,
                    source=item.get("location", {}).get("s3Location", {}).get("uri", ""),
                    metadata=item.get("metadata", {}),
                )
            )

        self.cache.set(cache_key, results)
        logger.info(
            "Knowledge search complete",
            extra={"scope": request.scope, "results_count": len(results)},
        )
        return results

    @staticmethod
    def _cache_key(request: KBQuery) -> str:
        content = f"{request.scope}:{request.query}:{request.limit}:{request.min_score}"
        return hashlib.md5(content.encode()).hexdigest()
