"""
CMMC tracker core package.

This package contains the persistence and domain logic for tracking
CMMC 2.0 compliance:
- storage: Key-value storage backends (in-memory and JSON files) with a byte quota
- data_store: Persistent snapshot store with backup, restore, import and reset
- repository: Generic async repository with typed search filters, statistics and CSV export
- controls, policies, evidence, team, calendar_events: Domain repositories
- risk_scoring / risk_register: Likelihood x impact scoring for risk assessments and threat models
- reporting: Concurrent statistics aggregation, compliance scoring and recommendations
- export_reports: HTML, CSV, PDF and Excel rendering of generated reports
- services: Composition root wiring a store and every repository together
"""

__version__ = "1.0.0"
