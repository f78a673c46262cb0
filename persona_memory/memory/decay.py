"""Maintenance sweep: decay factors and deactivation of stale records."""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional

from ..config import DecayConfig
from ..observability import Observability
from .schema import MemoryRecord, age_days, utc_now
from .store import DocumentStore

logger = logging.getLogger(__name__)

SWEEP_LIMIT = 1_000_000


@dataclass(frozen=True)
class DecayReport:
    scanned: int = 0
    updated: int = 0
    deactivated: int = 0


def decayed_factor(record: MemoryRecord, config: DecayConfig, now: datetime) -> float:
    age = age_days(record.created_at, now)
    access_multiplier = max(config.access_floor, 1.0 - record.access_count * config.access_step)
    age_multiplier = max(config.age_floor, 1.0 - age * config.age_step)
    factor = record.decay_factor * access_multiplier * age_multiplier
    return min(record.decay_factor, max(0.0, factor))


def is_stale(record: MemoryRecord, config: DecayConfig, now: datetime) -> bool:
    return (
        age_days(record.created_at, now) > config.staleness_days
        and record.access_count == 0
        and record.importance < config.low_importance
    )


class DecayJob:
    def __init__(
        self,
        store: DocumentStore,
        config: Optional[DecayConfig] = None,
        *,
        observability: Optional[Observability] = None,
    ) -> None:
        self.store = store
        self.config = config or DecayConfig()
        self.observability = observability

    async def run(self, owner_id: str, *, now: Optional[datetime] = None) -> DecayReport:
        """Sweep the owner's active records once.

        A new decay factor is written only when it drops by more than the
        materiality threshold. Deactivation is permanent.
        """
        now = now or utc_now()
        records = await self.store.query(owner_id, is_active=True, limit=SWEEP_LIMIT)
        updated = 0
        deactivated = 0
        for record in records:
            factor = decayed_factor(record, self.config, now)
            changed = record.decay_factor - factor > self.config.materiality
            stale = is_stale(record, self.config, now)
            if not (changed or stale):
                continue
            new_record = record
            if changed:
                new_record = replace(new_record, decay_factor=factor)
                updated += 1
            if stale:
                new_record = replace(new_record, is_active=False)
                deactivated += 1
            await self.store.put(new_record)
        report = DecayReport(scanned=len(records), updated=updated, deactivated=deactivated)
        logger.info(
            "Decay sweep for %s: scanned=%d updated=%d deactivated=%d",
            owner_id,
            report.scanned,
            report.updated,
            report.deactivated,
        )
        if self.observability is not None:
            self.observability.record_decay_run(
                owner_id=owner_id,
                scanned=report.scanned,
                updated=report.updated,
                deactivated=report.deactivated,
            )
        return report


__all__ = ["DecayJob", "DecayReport", "decayed_factor", "is_stale"]
