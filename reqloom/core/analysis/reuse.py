"""Similarity reuse engine.

Classifies a new request against finalized analyses by cosine similarity
of their vector signatures. The result is advisory: it shapes the prompt
but never blocks or replaces inference.

Tiers (inclusive lower bounds, highest first):
    >= 0.90 EXACT, >= 0.60 HIGH, >= 0.30 PARTIAL, >= 0.15 LOW, else no match
"""

import logging
import uuid
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
from sqlalchemy import Float, literal, select
from pgvector.sqlalchemy import Vector

from ..constants import (
    REUSE_EXACT_THRESHOLD,
    REUSE_HIGH_THRESHOLD,
    REUSE_LOW_THRESHOLD,
    REUSE_PARTIAL_THRESHOLD,
)
from ..db import Analysis, DatabaseManager
from ..db.models import EMBED_DIM
from ..embedding import EmbeddingService
from .models import ReuseHint, ReuseTier

logger = logging.getLogger(__name__)

_TIERS = (
    (REUSE_EXACT_THRESHOLD, ReuseTier.EXACT),
    (REUSE_HIGH_THRESHOLD, ReuseTier.HIGH),
    (REUSE_PARTIAL_THRESHOLD, ReuseTier.PARTIAL),
    (REUSE_LOW_THRESHOLD, ReuseTier.LOW),
)


def classify_similarity(similarity: Optional[float]) -> Optional[ReuseTier]:
    """Map a cosine similarity to its reuse tier, or None below LOW."""
    if similarity is None:
        return None
    for threshold, tier in _TIERS:
        if similarity >= threshold:
            return tier
    return None


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    if va.shape != vb.shape:
        return 0.0
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom == 0.0:
        return 0.0
    return float(np.dot(va, vb) / denom)


class SimilarityReuseEngine:
    """Find the closest finalized analysis for a piece of request text."""

    def __init__(self, db_manager: DatabaseManager, embedder: Optional[EmbeddingService] = None):
        self._db = db_manager
        self._embedder = embedder

    def find_best_match(
        self,
        vector: Sequence[float],
        owner_id: Optional[Any] = None,
        exclude_root: Optional[Any] = None,
    ) -> Optional[Tuple[uuid.UUID, float]]:
        """Return ``(analysis_id, similarity)`` of the nearest finalized record."""
        if self._db.is_postgres:
            return self._nearest_pgvector(vector, owner_id, exclude_root)
        return self._nearest_numpy(vector, owner_id, exclude_root)

    def _filters(self, owner_id, exclude_root) -> List:
        filters = [Analysis.is_finalized.is_(True), Analysis.vector_signature.isnot(None)]
        if owner_id is not None:
            filters.append(Analysis.user_id == owner_id)
        if exclude_root is not None:
            filters.append(Analysis.root_id != exclude_root)
        return filters

    def _nearest_pgvector(self, vector, owner_id, exclude_root):
        query_vec = literal(list(vector), type_=Vector(EMBED_DIM))
        distance = Analysis.vector_signature.op("<=>", return_type=Float)(query_vec)
        with self._db.get_session() as session:
            row = session.execute(
                select(Analysis.analysis_id, distance.label("distance"))
                .where(*self._filters(owner_id, exclude_root))
                .order_by(distance)
                .limit(1)
            ).first()
        if row is None:
            return None
        return row.analysis_id, 1.0 - float(row.distance)

    def _nearest_numpy(self, vector, owner_id, exclude_root):
        with self._db.get_session() as session:
            rows = session.execute(
                select(Analysis.analysis_id, Analysis.vector_signature)
                .where(*self._filters(owner_id, exclude_root))
            ).all()
        best = None
        for analysis_id, signature in rows:
            score = cosine_similarity(vector, signature)
            if best is None or score > best[1]:
                best = (analysis_id, score)
        return best

    def lookup(
        self,
        text: str,
        owner_id: Optional[Any] = None,
        exclude_root: Optional[Any] = None,
    ) -> ReuseHint:
        """Embed ``text`` and classify the best match.

        Never raises: any embedding or search failure yields ``found=False``.
        """
        if self._embedder is None:
            return ReuseHint(found=False)
        try:
            vector = self._embedder.try_embed(text)
            if vector is None:
                return ReuseHint(found=False)
            match = self.find_best_match(vector, owner_id=owner_id, exclude_root=exclude_root)
        except Exception as e:
            logger.warning(f"Reuse lookup failed, continuing without hint: {e}")
            return ReuseHint(found=False)

        if match is None:
            return ReuseHint(found=False)
        match_id, similarity = match
        tier = classify_similarity(similarity)
        if tier is None:
            logger.debug(f"Best reuse candidate {match_id} below threshold ({similarity:.3f})")
            return ReuseHint(found=False, similarity=similarity)
        if tier == ReuseTier.LOW:
            logger.info(f"Low-similarity reuse candidate {match_id} ({similarity:.3f}), ignored")
        return ReuseHint(found=True, tier=tier, similarity=similarity, match_id=str(match_id))

    def load_context(self, hint: ReuseHint) -> Optional[Dict[str, Any]]:
        """Result of the matched record for prompt construction.

        LOW matches are logged only and contribute no context.
        """
        if not hint.found or hint.tier in (None, ReuseTier.LOW) or not hint.match_id:
            return None
        try:
            with self._db.get_session() as session:
                record = session.get(Analysis, uuid.UUID(hint.match_id))
                if record is None or not record.result_json:
                    return None
                return {"tier": hint.tier.value, "result": record.result_json}
        except Exception as e:
            logger.warning(f"Could not load reuse context {hint.match_id}: {e}")
            return None
