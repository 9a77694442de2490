# /flowcore/services/retrieval_service.py

import logging
import uuid
from typing import Any, Dict, List, Optional, Sequence, Tuple

from flowcore.config.settings import settings
from flowcore.models.retrieval import BRAINID_KEY, DOCID_KEY, LANGID_KEY, RetrievalResult, ScoredDocument, SearchOptions
from flowcore.services.keyword_index import KeywordIndex
from flowcore.services.knowledge_service import DocumentTextProvider, KnowledgeBaseService, knowledge_service
from flowcore.services.language_service import LanguageDetector, language_detector
from flowcore.services.text_splitter import get_splits
from flowcore.utils.metrics import retrieval_searches_counter

# Two-stage search: whole documents are ranked by keyword relevance, then the
# chunks of the best documents are re-ranked in a transient index built for
# this search only.

logger = logging.getLogger(__name__)

CHUNK_ID_KEY = "__chunkid"


def default_search_options(**overrides: Any) -> SearchOptions:
    values = {
        "top_k": settings.retrieval_top_k,
        "widening_factor": settings.retrieval_widening_factor,
        "cutoff_score": settings.retrieval_cutoff_score,
        "chunk_size": settings.retrieval_chunk_size,
        "chunk_overlap": settings.retrieval_chunk_overlap,
        "transient_idf_min_chunks": settings.retrieval_transient_idf_min_chunks,
    }
    values.update({key: value for key, value in overrides.items() if value is not None})
    return SearchOptions(**values)


def _metadata_filter(expected: Optional[Dict[str, Any]]):
    if not expected:
        return None
    return lambda metadata: all(metadata.get(key) == value for key, value in expected.items())


class RetrievalService:
    def __init__(self, knowledge: KnowledgeBaseService, text_provider: DocumentTextProvider, detector: LanguageDetector):
        self.knowledge = knowledge
        self.text_provider = text_provider
        self.detector = detector

    async def search(
        self,
        id: str,
        org: str,
        query: str,
        brain_ids: Sequence[str],
        options: Optional[SearchOptions] = None,
    ) -> List[RetrievalResult]:
        """
        Returns up to options.top_k chunks, best first. An empty list means no
        knowledge, which is not an error.
        """
        options = options or default_search_options()

        documents = self._rank_documents(org, query, brain_ids, options)
        if not documents:
            logger.warning(f"No matching documents found for query {query!r} for id {id} org {org} and brains {list(brain_ids)}.")
            retrieval_searches_counter.labels(outcome="noknowledge").inc()
            return []

        chunks = await self._chunk_documents(id, org, documents, options)
        if not chunks:
            retrieval_searches_counter.labels(outcome="noknowledge").inc()
            return []

        results = self._rerank_chunks(query, chunks, options)
        retrieval_searches_counter.labels(outcome="found" if results else "noknowledge").inc()
        return results

    def _rank_documents(self, org: str, query: str, brain_ids: Sequence[str], options: SearchOptions) -> List[ScoredDocument]:
        scored: List[ScoredDocument] = []
        filter_function = _metadata_filter(options.metadata_filter)
        for index in self.knowledge.indexes_for(org, brain_ids):
            results = index.query(query, options.documents_to_fetch, filter_function, options.cutoff_score)
            if results:
                scored.extend(results)
            else:
                logger.debug(f"No documents found in index {index.name} for query {query!r}.")
        # IDF is not comparable across indexes, so the merged list is ranked by TF.
        return KeywordIndex.sort_for_tf(scored)[: options.documents_to_fetch]

    async def _chunk_documents(self, id: str, org: str, documents: List[ScoredDocument], options: SearchOptions) -> List[Tuple[str, Dict[str, Any]]]:
        chunks: List[Tuple[str, Dict[str, Any]]] = []
        for document in documents:
            docid = document.metadata.get(DOCID_KEY)
            try:
                text = await self.text_provider.get_text(id, org, docid, document.metadata.get(BRAINID_KEY))
            except Exception as e:
                logger.warning(f"Skipping document {docid}, its text could not be loaded: {e}")
                continue
            lang = document.metadata.get(LANGID_KEY) or self.detector.detect(text)
            separators = settings.separators_for(lang)
            for chunk in get_splits(text, options.chunk_size, separators, options.chunk_overlap):
                chunks.append((chunk, {**document.metadata, LANGID_KEY: lang}))
        return chunks

    def _rerank_chunks(self, query: str, chunks: List[Tuple[str, Dict[str, Any]]], options: SearchOptions) -> List[RetrievalResult]:
        use_idf = bool(options.transient_idf_min_chunks) and len(chunks) >= options.transient_idf_min_chunks
        transient = KeywordIndex(f"transient-{uuid.uuid4().hex}", docid_key=CHUNK_ID_KEY, noidf=not use_idf, keep_text=True)
        try:
            for position, (chunk, metadata) in enumerate(chunks):
                transient.create(chunk, {**metadata, CHUNK_ID_KEY: str(position)})
            ranked = transient.sort_for_tf(transient.query(query, None, None, options.cutoff_score))[: options.top_k]
        finally:
            transient.release()

        results = []
        for scored in ranked:
            metadata = {key: value for key, value in scored.metadata.items() if key != CHUNK_ID_KEY}
            results.append(RetrievalResult(text=scored.text or "", metadata=metadata, score=scored.score))
        return results


# Globally accessible instance
retrieval_service = RetrievalService(knowledge_service, knowledge_service, language_detector)
