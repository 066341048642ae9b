from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..domain.value_types import Signature
from .sql_schema import ProcessedSignature, utcnow


class SqlDedupStore:
    """
    has/mark over processed_sigs, bound to one session.
    `mark` is a plain insert: a second mark of the same signature is a
    primary-key violation, so callers must check `has` in the same transaction.
    """
    def __init__(self, session: Session) -> None:
        self.session = session

    def has(self, signature: Signature) -> bool:
        stmt = select(ProcessedSignature.signature).where(ProcessedSignature.signature == signature)
        return self.session.execute(stmt).first() is not None

    def mark(self, signature: Signature) -> None:
        self.session.add(ProcessedSignature(signature=signature, processed_at=utcnow()))
        self.session.flush()
