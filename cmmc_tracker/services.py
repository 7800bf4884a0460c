"""
Composition root.

``build_services`` wires one storage backend, one ``DataStore`` and
every repository around it. Tests and embedding applications call it
with their own storage; ``get_default_services`` keeps a lazily built
process-wide instance configured from the environment.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from cmmc_tracker.calendar_events import CalendarRepository
from cmmc_tracker.config import AppConfig, configure_logging, load_config
from cmmc_tracker.controls import ControlsRepository
from cmmc_tracker.data_store import DataStore
from cmmc_tracker.evidence import EvidenceRepository
from cmmc_tracker.models import utcnow
from cmmc_tracker.policies import PoliciesRepository
from cmmc_tracker.reporting import ReportingEngine, ReportsRepository
from cmmc_tracker.risk_register import RiskAssessmentService, ThreatModelService
from cmmc_tracker.storage import FileStorage, KeyValueStorage
from cmmc_tracker.team import TeamService

logger = logging.getLogger(__name__)


@dataclass
class Services:
    config: AppConfig
    storage: KeyValueStorage
    store: DataStore
    controls: ControlsRepository
    policies: PoliciesRepository
    evidence: EvidenceRepository
    team: TeamService
    calendar: CalendarRepository
    risk_assessments: RiskAssessmentService
    threat_models: ThreatModelService
    reports: ReportsRepository
    reporting: ReportingEngine


def build_services(
    config: Optional[AppConfig] = None,
    storage: Optional[KeyValueStorage] = None,
    clock: Callable[[], datetime] = utcnow,
) -> Services:
    """Create a fully wired set of repositories sharing one store."""
    config = config or AppConfig()
    if storage is None:
        storage = FileStorage(config.storage_dir, config.quota_bytes)
    store = DataStore(storage, config.key_prefix)

    controls = ControlsRepository(store, config, clock)
    policies = PoliciesRepository(store, config, clock)
    evidence = EvidenceRepository(store, config, clock)
    team = TeamService(store, config, clock)
    calendar = CalendarRepository(store, config, clock)
    reports = ReportsRepository(store, config, clock)
    return Services(
        config=config,
        storage=storage,
        store=store,
        controls=controls,
        policies=policies,
        evidence=evidence,
        team=team,
        calendar=calendar,
        risk_assessments=RiskAssessmentService(store, config, clock),
        threat_models=ThreatModelService(store, config, clock),
        reports=reports,
        reporting=ReportingEngine(reports, controls, policies, evidence, team, calendar, clock),
    )


_default_services: Optional[Services] = None


def get_default_services() -> Services:
    """Process-wide services built from ``CMMC_*`` environment settings."""
    global _default_services
    if _default_services is None:
        config = load_config()
        configure_logging(config.log_level)
        _default_services = build_services(config)
        logger.info("Initialized default services with storage at '%s'", config.storage_dir)
    return _default_services
