import logging
from collections import Counter
from typing import Dict, List, Mapping, Optional, Tuple

from sqlalchemy import delete, select
from sqlalchemy.orm import Session
from sqlalchemy.sql import ColumnElement

from services.invariants import DEPENDENCY_GRAPH, Dependency

logger = logging.getLogger(__name__)


class CascadeExecutor:
    """Deletes rows together with everything that references them.

    Runs inside the caller's session, so the parent delete and all dependent
    deletes commit or roll back as one unit. Dependents are removed before
    their parents (leaf-to-root), at any depth of the graph.
    """

    def __init__(self, graph: Optional[Mapping[type, List[Dependency]]] = None):
        self.graph = DEPENDENCY_GRAPH if graph is None else graph

    def delete(self, db: Session, model: type, criterion: ColumnElement) -> Dict[str, int]:
        """Delete ``model`` rows matching ``criterion``; returns rows deleted per table."""
        counts: Counter = Counter()
        self._cascade(db, model, criterion, counts, path=())
        logger.debug("Cascade from %s deleted %s", model.__tablename__, dict(counts))
        return dict(counts)

    def _cascade(
        self,
        db: Session,
        model: type,
        criterion: ColumnElement,
        counts: Counter,
        path: Tuple[type, ...],
    ) -> None:
        if model in path:
            raise ValueError(f"Cycle in dependency graph at {model.__name__}")
        for dep in self.graph.get(model, ()):
            parent_keys = select(dep.parent_key).where(criterion)
            self._cascade(db, dep.child, dep.foreign_key.in_(parent_keys), counts, path + (model,))
        counts[model.__tablename__] += self._delete_rows(db, model, criterion)

    def _delete_rows(self, db: Session, model: type, criterion: ColumnElement) -> int:
        stmt = delete(model).where(criterion).execution_options(synchronize_session=False)
        return db.execute(stmt).rowcount
