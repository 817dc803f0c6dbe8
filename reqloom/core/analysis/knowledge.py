"""Finalization: promote a completed analysis into the reuse corpus.

finalize() is one-way and idempotent. The first call flips is_finalized,
shreds the result into KnowledgeChunks (one per feature, one per
non-functional category) and stores a vector signature. Later calls
store nothing.

The signature is written after the finalize transaction commits. A
failed embedding or vector write leaves a finalized record without a
signature; it never fails the call.
"""

import hashlib
import json
import logging
import re
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ..db import Analysis, DatabaseManager, KnowledgeChunk
from ..embedding import EmbeddingService
from ..exceptions import ConflictError
from .models import JobStatus
from .state_machine import JobStateMachine
from .versioning import VersionManager

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"[a-z0-9][a-z0-9\-]+")


def chunk_hash(chunk_type: str, content: Any) -> str:
    """SHA-256 over canonical JSON of ``{type, content}``."""
    canonical = json.dumps(
        {"type": chunk_type, "content": content},
        sort_keys=True, separators=(",", ":"), ensure_ascii=False,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _tags(*texts: Optional[str]) -> List[str]:
    seen = []
    for text in texts:
        for token in _TOKEN_RE.findall((text or "").lower()):
            if len(token) > 2 and token not in seen:
                seen.append(token)
    return seen


def shred(result: Optional[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    """Split a structured result into chunk dicts (type, content, hash, tags).

    Identical fragments inside one result collapse to a single chunk.
    """
    if not result:
        return []
    title = result.get("projectTitle") or ""
    chunks: Dict[str, Dict[str, Any]] = {}

    def add(chunk_type: str, content: Any, tags: List[str]):
        digest = chunk_hash(chunk_type, content)
        chunks.setdefault(digest, {
            "type": chunk_type, "content": content, "hash": digest, "tags": tags,
        })

    for feature in result.get("systemFeatures") or []:
        if not isinstance(feature, dict) or not feature.get("name"):
            continue
        add("feature", feature, _tags(feature.get("name"), title))

    nfrs = result.get("nonFunctionalRequirements") or []
    if isinstance(nfrs, dict):
        for category, items in nfrs.items():
            items = [str(i) for i in (items if isinstance(items, list) else [items]) if i]
            if items:
                add(f"nfr:{category}", items, _tags(category, title))
    elif isinstance(nfrs, list):
        items = [str(i) for i in nfrs if i]
        if items:
            add("nfr:general", items, _tags("general", title))

    return list(chunks.values())


class KnowledgeService:
    """Finalize analyses and keep the chunk corpus deduplicated."""

    def __init__(
        self,
        db_manager: DatabaseManager,
        versions: VersionManager,
        state_machine: JobStateMachine,
        embedder: Optional[EmbeddingService] = None,
    ):
        self._db = db_manager
        self._versions = versions
        self._jobs = state_machine
        self._embedder = embedder

    def finalize(self, analysis_id: Any, owner_id: Any) -> Dict[str, Any]:
        """Finalize a completed analysis.

        Returns:
            Dict with analysisId, chunksStored (new rows only),
            alreadyFinalized and hasSignature

        Raises:
            NotFoundError / AuthorizationError: unknown or foreign id.
            ConflictError: the analysis is not COMPLETED.
        """
        with self._db.get_session() as session:
            record = self._jobs.load_owned(session, analysis_id, owner_id)
            if record.status != JobStatus.COMPLETED.value:
                raise ConflictError(
                    f"Analysis {analysis_id} is {record.status}; only completed versions can be finalized",
                    status=record.status,
                )
            aid = record.analysis_id
            if record.is_finalized:
                logger.info(f"Analysis {aid} already finalized, nothing to do")
                return {
                    "analysisId": str(aid),
                    "chunksStored": 0,
                    "alreadyFinalized": True,
                    "hasSignature": record.vector_signature is not None,
                }
            chunks = shred(record.result_json)
            input_text = record.input_text

        def persist(session: Session) -> Optional[int]:
            flipped = session.execute(
                update(Analysis)
                .where(Analysis.analysis_id == aid, Analysis.is_finalized.is_(False))
                .values({Analysis.is_finalized: True})
                .execution_options(synchronize_session=False)
            ).rowcount
            if flipped != 1:
                return None
            return self._store_chunks(session, chunks, aid)

        stored = self._versions.run_versioned(persist)
        if stored is None:
            logger.info(f"Analysis {aid} finalized concurrently, nothing stored")
            return {"analysisId": str(aid), "chunksStored": 0, "alreadyFinalized": True, "hasSignature": False}

        has_signature = self._store_signature(aid, input_text)
        logger.info(
            f"Analysis {aid} finalized: {stored}/{len(chunks)} new chunk(s), "
            f"signature={'yes' if has_signature else 'no'}"
        )
        return {
            "analysisId": str(aid),
            "chunksStored": stored,
            "alreadyFinalized": False,
            "hasSignature": has_signature,
        }

    @staticmethod
    def _store_chunks(session: Session, chunks: List[Dict[str, Any]], source_id) -> int:
        if not chunks:
            return 0
        existing = set(session.execute(
            select(KnowledgeChunk.hash).where(KnowledgeChunk.hash.in_([c["hash"] for c in chunks]))
        ).scalars())
        fresh = [c for c in chunks if c["hash"] not in existing]
        for chunk in fresh:
            session.add(KnowledgeChunk(
                type=chunk["type"],
                content=chunk["content"],
                hash=chunk["hash"],
                tags=chunk["tags"],
                source_analysis_id=source_id,
            ))
        session.flush()
        return len(fresh)

    def _store_signature(self, analysis_id, input_text: str) -> bool:
        if self._embedder is None:
            return False
        vector = self._embedder.try_embed(input_text)
        if vector is None:
            logger.warning(f"Analysis {analysis_id} finalized without signature (embedding unavailable)")
            return False
        try:
            with self._db.get_session() as session:
                session.execute(
                    update(Analysis)
                    .where(Analysis.analysis_id == analysis_id, Analysis.is_finalized.is_(True))
                    .values({Analysis.vector_signature: vector})
                    .execution_options(synchronize_session=False)
                )
        except Exception as e:
            logger.warning(f"Vector write for {analysis_id} failed, finalized without signature: {e}")
            return False
        return True

    def list_chunks(self, chunk_type: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
        with self._db.get_session() as session:
            query = select(KnowledgeChunk).order_by(KnowledgeChunk.created_at.desc()).limit(limit)
            if chunk_type:
                query = query.where(KnowledgeChunk.type == chunk_type)
            return [
                {
                    "id": str(c.chunk_id),
                    "type": c.type,
                    "content": c.content,
                    "hash": c.hash,
                    "tags": c.tags or [],
                    "sourceAnalysisId": str(c.source_analysis_id) if c.source_analysis_id else None,
                }
                for c in session.execute(query).scalars()
            ]
