# /flowcore/commands/retrieve.py

"""
Flow command module `retrieve`: two-stage document search.

Inputs read from the call params:
    query                 the text to search for
    brainid / brainids    knowledge bases to search, defaults to the app id
    topK_vectors          chunks to return after re-ranking
    topK_tfidf            documents to take from the first stage
    cutoff_score_tfidf    score cutoff relative to the best match, 0 to 1
    chunk_size            target chunk size in characters
    metadata              metadata to match, used when search_metadata is true
    format                "text" for a blob joined by blank lines
    return_error_on_empty signal NOKNOWLEDGE instead of returning nothing
"""

import logging
from typing import Any, Dict, List, Union

from flowcore.models.api import Reason
from flowcore.models.retrieval import to_blob
from flowcore.services.retrieval_service import default_search_options, retrieval_service

logger = logging.getLogger(__name__)


def _brain_ids(params: Dict[str, Any]) -> List[str]:
    brain_ids = params.get("brainids") or params.get("brainid") or params.get("aiappid")
    if isinstance(brain_ids, str):
        return [brain_ids]
    return list(brain_ids or [])


async def search(params: Dict[str, Any], step=None) -> Union[List[Dict[str, Any]], str]:
    options = default_search_options(
        top_k=params.get("topK_vectors") or params.get("top_k"),
        top_k_documents=params.get("topK_tfidf"),
        cutoff_score=params.get("cutoff_score_tfidf"),
        chunk_size=params.get("chunk_size"),
        chunk_overlap=params.get("chunk_overlap"),
        metadata_filter=params.get("metadata") if params.get("search_metadata") else None,
    )
    results = await retrieval_service.search(params["id"], params["org"], params.get("query") or "", _brain_ids(params), options)

    if not results and params.get("return_error_on_empty"):
        params["return_error"]("No knowledge of this topic.", Reason.NOKNOWLEDGE)
        return []
    if params.get("format") == "text":
        return to_blob(results)
    return [result.model_dump() for result in results]


answer = search
