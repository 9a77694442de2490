# /flowcore/services/keyword_index.py

"""
In-memory keyword relevance index.

Scores are `coord * sum(tf * idf)` over the query words, where
- tf is the word's count in the document divided by the document's length
- idf is `1 + log10(N / (df + 1))`, or 1 when the index is built with noidf
- coord is `1 + max_coord_boost * found / total query words`

The same class serves as a knowledge base index and as the transient index
used to re-rank document chunks, which is created per search and released.
"""

import logging
import math
import uuid
from collections import Counter
from typing import Any, Callable, Dict, Iterable, List, Optional

from flowcore.models.retrieval import DOCID_KEY, ScoredDocument
from flowcore.services.language_service import segment_words

logger = logging.getLogger(__name__)

DEFAULT_MAX_COORD_BOOST = 0.1

DEFAULT_STOPWORDS = frozenset(
    "a an and are as at be by for from has have i in is it its of on or that the this to was were what when where "
    "which who why will with you your".split()
)

MetadataFilter = Callable[[Dict[str, Any]], bool]


class _IndexedDocument:
    __slots__ = ("metadata", "counts", "length", "text")

    def __init__(self, metadata: Dict[str, Any], counts: Counter, length: int, text: Optional[str]):
        self.metadata = metadata
        self.counts = counts
        self.length = length
        self.text = text


class KeywordIndex:
    def __init__(
        self,
        name: str,
        docid_key: str = DOCID_KEY,
        noidf: bool = False,
        max_coord_boost: float = DEFAULT_MAX_COORD_BOOST,
        stopwords: Optional[Iterable[str]] = None,
        keep_text: bool = False,
    ):
        self.name = name
        self.docid_key = docid_key
        self.noidf = noidf
        self.max_coord_boost = max_coord_boost
        self.stopwords = frozenset(stopwords) if stopwords is not None else DEFAULT_STOPWORDS
        self.keep_text = keep_text
        self._documents: Dict[str, _IndexedDocument] = {}
        self._document_frequency: Counter = Counter()
        self._released = False

    def __len__(self) -> int:
        return len(self._documents)

    def _words(self, text: str) -> List[str]:
        return [word for word in (w.lower() for w in segment_words(text or "")) if word not in self.stopwords]

    def _check_open(self):
        if self._released:
            raise RuntimeError(f"Keyword index {self.name} has been released")

    def create(self, text: str, metadata: Optional[Dict[str, Any]] = None) -> str:
        self._check_open()
        metadata = dict(metadata or {})
        docid = str(metadata.get(self.docid_key) or uuid.uuid4().hex)
        metadata[self.docid_key] = docid
        if docid in self._documents:
            self.delete(docid)
        words = self._words(text)
        counts = Counter(words)
        self._documents[docid] = _IndexedDocument(metadata, counts, max(len(words), 1), text if self.keep_text else None)
        self._document_frequency.update(counts.keys())
        return docid

    def update(self, text: str, metadata: Dict[str, Any]) -> str:
        return self.create(text, metadata)

    def delete(self, docid: str) -> bool:
        self._check_open()
        document = self._documents.pop(str(docid), None)
        if document is None:
            return False
        self._document_frequency.subtract(document.counts.keys())
        self._document_frequency += Counter()  # drops zero counts
        return True

    def get_text(self, docid: str) -> Optional[str]:
        document = self._documents.get(str(docid))
        return document.text if document else None

    def query(
        self,
        text: Optional[str],
        top_k: Optional[int] = None,
        filter_function: Optional[MetadataFilter] = None,
        cutoff_score: Optional[float] = None,
    ) -> List[ScoredDocument]:
        """
        Ranks documents against text, best first.

        cutoff_score is relative to the best score (0 to 1). An empty query
        returns every document with a zero score and ignores top_k and cutoff.
        """
        self._check_open()
        query_words = self._words(text or "")
        if not query_words:
            return [
                ScoredDocument(metadata=dict(doc.metadata), score=0.0, tf_score=0.0, text=doc.text)
                for doc in self._documents.values()
                if not filter_function or filter_function(doc.metadata)
            ]

        total_documents = len(self._documents)
        scored: List[ScoredDocument] = []
        highest_score = 0.0
        for document in self._documents.values():
            if filter_function and not filter_function(document.metadata):
                continue
            score = tf_score = 0.0
            found = 0
            for word in query_words:
                count = document.counts.get(word, 0)
                if not count:
                    continue
                tf = count / document.length
                idf = 1.0 if self.noidf else 1 + math.log10(total_documents / (self._document_frequency[word] + 1))
                tf_score += tf
                score += tf * idf
                found += 1
            if not found:
                continue
            coord = 1 + self.max_coord_boost * found / len(query_words)
            score *= coord
            scored.append(ScoredDocument(metadata=dict(document.metadata), score=score, tf_score=tf_score, text=document.text))
            highest_score = max(highest_score, score)

        scored.sort(key=lambda doc: doc.score, reverse=True)
        if cutoff_score and highest_score > 0:
            scored = [doc for doc in scored if doc.score / highest_score >= cutoff_score]
        return scored[:top_k] if top_k else scored

    @staticmethod
    def sort_for_tf(documents: List[ScoredDocument]) -> List[ScoredDocument]:
        documents.sort(key=lambda doc: doc.tf_score, reverse=True)
        return documents

    def release(self):
        """Frees the index; any further use raises."""
        self._documents = {}
        self._document_frequency = Counter()
        self._released = True
        logger.debug(f"Keyword index {self.name} released.")
