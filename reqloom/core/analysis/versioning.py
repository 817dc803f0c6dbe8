"""Version DAG bookkeeping.

Every Analysis belongs to exactly one lineage (root_id). Versions inside
a lineage are assigned as max(version)+1 while holding a row lock on the
root record, so concurrent derivations on the same root serialize. The
unique (root_id, version) constraint backs this up on stores without row
locks (SQLite); a writer that loses the race gets an IntegrityError and
``run_versioned`` replays its whole transaction.
"""

import logging
import uuid
from typing import Any, Callable, List, Optional, Tuple, TypeVar

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..constants import VERSION_ASSIGN_RETRIES
from ..db import Analysis, DatabaseManager
from ..exceptions import ConflictError, NotFoundError
from .models import Trigger

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _uuid(value: Any) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


class VersionManager:
    """Assign lineage positions for new and derived Analysis records."""

    def __init__(self, db_manager: DatabaseManager, max_retries: int = VERSION_ASSIGN_RETRIES):
        self._db = db_manager
        self.max_retries = max_retries

    # ── Transactions ────────────────────────────────────────────────────

    def run_versioned(self, fn: Callable[[Session], T]) -> T:
        """Run ``fn`` in its own transaction, replaying it on version races.

        Raises:
            ConflictError: still colliding after ``max_retries`` attempts.
        """
        for attempt in range(1, self.max_retries + 1):
            try:
                with self._db.get_session() as session:
                    return fn(session)
            except IntegrityError as e:
                logger.warning(
                    f"Version assignment collided (attempt {attempt}/{self.max_retries}): "
                    f"{e.orig if hasattr(e, 'orig') else e}"
                )
        raise ConflictError("Could not assign a unique version; concurrent writers on this lineage")

    # ── Assignment ──────────────────────────────────────────────────────

    def assign_version(self, session: Session, root_id: Optional[Any] = None) -> Tuple[int, Optional[uuid.UUID]]:
        """Return ``(version, root_id)`` for a new record.

        Without ``root_id`` the new record is its own root at version 1
        (the caller sets root_id to the new id). With one, the root row is
        locked and the next version is max+1 under it.

        Raises:
            NotFoundError: ``root_id`` does not reference an existing record.
        """
        if root_id is None:
            return 1, None

        rid = _uuid(root_id)
        root = session.execute(
            select(Analysis.analysis_id)
            .where(Analysis.analysis_id == rid)
            .with_for_update()
        ).scalar_one_or_none()
        if root is None:
            raise NotFoundError(f"Lineage root {rid} not found")

        current = session.execute(
            select(func.max(Analysis.version)).where(Analysis.root_id == rid)
        ).scalar()
        return (current or 0) + 1, rid

    def create_root(self, session: Session, **fields) -> Analysis:
        """Insert a lineage root (version 1, root_id = own id)."""
        analysis_id = fields.pop("analysis_id", None) or uuid.uuid4()
        record = Analysis(
            analysis_id=analysis_id,
            root_id=analysis_id,
            parent_id=None,
            version=1,
            **fields,
        )
        session.add(record)
        session.flush()
        logger.info(f"Created root analysis {analysis_id} (v1)")
        return record

    def derive_new_version(
        self,
        session: Session,
        parent: Analysis,
        trigger: Trigger,
        **fields,
    ) -> Analysis:
        """Insert a child of ``parent`` at the next version of its lineage."""
        root_id = parent.root_id or parent.analysis_id
        version, root_id = self.assign_version(session, root_id)

        metadata = dict(fields.pop("analysis_metadata", None) or {})
        metadata.setdefault("trigger", trigger.value)

        record = Analysis(
            analysis_id=fields.pop("analysis_id", None) or uuid.uuid4(),
            root_id=root_id,
            parent_id=parent.analysis_id,
            version=version,
            user_id=fields.pop("user_id", parent.user_id),
            project_id=fields.pop("project_id", parent.project_id),
            analysis_metadata=metadata,
            **fields,
        )
        session.add(record)
        session.flush()
        logger.info(
            f"Derived analysis {record.analysis_id} v{version} from {parent.analysis_id} "
            f"(root={root_id}, trigger={trigger.value})"
        )
        return record

    # ── Lineage queries ─────────────────────────────────────────────────

    def lineage(self, session: Session, root_id: Any) -> List[Analysis]:
        """All versions under ``root_id``, newest version first."""
        rid = _uuid(root_id)
        return list(session.execute(
            select(Analysis)
            .where(Analysis.root_id == rid)
            .order_by(Analysis.version.desc())
        ).scalars())

    def head(self, session: Session, root_id: Any) -> Optional[Analysis]:
        """Highest version under ``root_id``."""
        rid = _uuid(root_id)
        return session.execute(
            select(Analysis)
            .where(Analysis.root_id == rid)
            .order_by(Analysis.version.desc())
            .limit(1)
        ).scalar_one_or_none()

    def count_versions(self, session: Session, root_id: Any) -> int:
        rid = _uuid(root_id)
        return session.execute(
            select(func.count()).select_from(Analysis).where(Analysis.root_id == rid)
        ).scalar() or 0
