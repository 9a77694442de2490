# /flowcore/services/knowledge_service.py

import asyncio
import logging
import os
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from flowcore.config.settings import settings
from flowcore.models.retrieval import BRAINID_KEY, DOCID_KEY, LANGID_KEY
from flowcore.services.keyword_index import KeywordIndex
from flowcore.services.language_service import LanguageDetector, language_detector

# Knowledge bases ("brains"): one keyword index per (org, brain id), plus the
# text of every ingested document so retrieval can chunk it later.

logger = logging.getLogger(__name__)


class DocumentTextProvider(Protocol):
    async def get_text(self, id: str, org: str, docid: str, brainid: Optional[str] = None) -> str: ...


class KnowledgeBaseService:
    def __init__(self, documents_dir: Optional[str] = None, detector: LanguageDetector = language_detector, max_coord_boost: float = 0.1):
        self.documents_dir = documents_dir
        self.detector = detector
        self.max_coord_boost = max_coord_boost
        self._indexes: Dict[Tuple[str, str], KeywordIndex] = {}
        self._texts: Dict[Tuple[str, str, str], str] = {}

    def index_for(self, org: str, brainid: str) -> KeywordIndex:
        key = (org, brainid)
        if key not in self._indexes:
            self._indexes[key] = KeywordIndex(f"{org}/{brainid}", max_coord_boost=self.max_coord_boost)
        return self._indexes[key]

    def indexes_for(self, org: str, brain_ids: Sequence[str]) -> List[KeywordIndex]:
        return [self._indexes[(org, brainid)] for brainid in brain_ids if (org, brainid) in self._indexes]

    async def ingest(self, id: str, org: str, brainid: str, docid: str, text: str, metadata: Optional[Dict[str, Any]] = None) -> str:
        metadata = {**(metadata or {}), DOCID_KEY: docid, BRAINID_KEY: brainid}
        metadata.setdefault(LANGID_KEY, self.detector.detect(text))
        self.index_for(org, brainid).create(text, metadata)
        self._texts[(org, brainid, docid)] = text
        logger.info(f"Ingested document {docid} into brain {brainid} of org {org} for id {id}.")
        return docid

    async def remove(self, id: str, org: str, brainid: str, docid: str) -> bool:
        removed = self.index_for(org, brainid).delete(docid)
        self._texts.pop((org, brainid, docid), None)
        return removed

    def clear(self):
        self._indexes = {}
        self._texts = {}

    async def get_text(self, id: str, org: str, docid: str, brainid: Optional[str] = None) -> str:
        """Text held for the document in the given brain (any brain when None), else read from disk."""
        for (text_org, text_brainid, text_docid), text in self._texts.items():
            if (text_org, text_docid) == (org, docid) and brainid in (None, text_brainid):
                return text
        if not self.documents_dir:
            raise FileNotFoundError(f"No text for document {docid} of org {org}")
        path = os.path.join(self.documents_dir, org, docid)

        def read() -> str:
            with open(path, "r", encoding="utf-8") as f:
                return f.read()

        return await asyncio.to_thread(read)


# Globally accessible instance
knowledge_service = KnowledgeBaseService(settings.documents_dir, language_detector, settings.retrieval_max_coord_boost)
