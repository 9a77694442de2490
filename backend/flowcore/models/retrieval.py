# /flowcore/models/retrieval.py

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

DOCID_KEY = "docid"
BRAINID_KEY = "brainid"
LANGID_KEY = "langid"
REFERENCELINK_KEY = "referencelink"


class RetrievalResult(BaseModel):
    text: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    score: float = 0.0


class SearchOptions(BaseModel):
    top_k: int = Field(default=3, ge=1, description="Chunks returned after re-ranking")
    widening_factor: int = Field(default=10, ge=1)
    top_k_documents: Optional[int] = Field(default=None, ge=1, description="Overrides top_k * widening_factor")
    cutoff_score: float = 0.0
    chunk_size: int = Field(default=1000, ge=1)
    chunk_overlap: int = Field(default=0, ge=0)
    metadata_filter: Optional[Dict[str, Any]] = None
    transient_idf_min_chunks: int = 0

    @property
    def documents_to_fetch(self) -> int:
        return self.top_k_documents or self.top_k * self.widening_factor


class ScoredDocument(BaseModel):
    metadata: Dict[str, Any]
    score: float
    tf_score: float
    text: Optional[str] = None


def to_blob(results: List[RetrievalResult]) -> str:
    return "\n\n".join(result.text for result in results)
