from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Callable, Dict, List, Protocol, Sequence

from sqlalchemy.orm import sessionmaker

from ..models import Machine, MachineDocument
from .clock import local_today, utcnow


@dataclass(frozen=True)
class Candidate:
    """A business entity approaching its deadline."""

    business_key: str
    deadline: date
    display_fields: Dict[str, Any] = field(default_factory=dict)


class CandidateSource(Protocol):
    def list_candidates(self, lookahead_days: int) -> Sequence[Candidate]: ...


class MachineDocumentSource:
    """
    Machine documents (RC book, PUC, fitness, insurance) of active machines
    expiring within the lookahead window. Documents that already expired are
    included so they keep alerting until renewed.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        timezone: str = "UTC",
        clock: Callable = utcnow,
    ):
        self._session_factory = session_factory
        self._timezone = timezone
        self._clock = clock

    def list_candidates(self, lookahead_days: int) -> List[Candidate]:
        today = local_today(self._clock(), self._timezone)
        horizon = today + timedelta(days=lookahead_days)

        with self._session_factory() as db:
            rows = (
                db.query(MachineDocument, Machine)
                .join(Machine, MachineDocument.machine_id == Machine.id)
                .filter(
                    Machine.is_active == True,  # noqa: E712
                    MachineDocument.expiry_date <= horizon,
                )
                .order_by(MachineDocument.expiry_date.asc(), MachineDocument.id.asc())
                .all()
            )

            return [
                Candidate(
                    business_key=str(doc.id),
                    deadline=doc.expiry_date,
                    display_fields={
                        "machine_number": machine.machine_number,
                        "machine_name": machine.name,
                        "document_type": doc.document_type,
                    },
                )
                for doc, machine in rows
            ]
