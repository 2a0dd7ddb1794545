"""Service wiring shared by the API, the Temporal activities and the scripts.

build_services() assembles repository, audit, lifecycle, ingestion,
reconciliation and gate components from Settings. The API and the worker
each hold one FulfillmentServices instance for the life of the process.
"""

from dataclasses import dataclass
from typing import Optional

from core.audit import AuditLogger, JSONFileAuditBackend
from core.config import Settings, load_settings
from core.security.identity import IdentityProvider, StaticIdentityProvider, UserRole
from core.storage.artifacts import ArtifactStore
from extraction.service import DocumentIngestionService
from gate.checkpoint import GateCheckpoint
from lifecycle.service import OrderLifecycle
from reconciliation.service import ReconciliationService
from storage.repository import Repository
from storage.sqlite_repository import SQLiteRepository


@dataclass
class FulfillmentServices:
    settings: Settings
    repository: Repository
    audit: AuditLogger
    artifact_store: ArtifactStore
    identity: IdentityProvider
    lifecycle: OrderLifecycle
    ingestion: DocumentIngestionService
    reconciliation: ReconciliationService
    gate: GateCheckpoint


def build_services(
    settings: Optional[Settings] = None,
    repository: Optional[Repository] = None,
    audit: Optional[AuditLogger] = None,
    identity: Optional[IdentityProvider] = None,
) -> FulfillmentServices:
    """Wire the components; defaults come from settings."""
    settings = settings or load_settings()
    repository = repository or SQLiteRepository(settings.db_path)

    if audit is None:
        audit = AuditLogger()
        audit.add_backend(JSONFileAuditBackend(settings.artifacts_dir / "audit"))

    if identity is None:
        identity = StaticIdentityProvider({user_id: UserRole(role) for user_id, role in settings.users})

    artifact_store = ArtifactStore(settings.artifacts_dir)
    lifecycle = OrderLifecycle(repository, settings=settings, audit=audit)

    return FulfillmentServices(
        settings=settings,
        repository=repository,
        audit=audit,
        artifact_store=artifact_store,
        identity=identity,
        lifecycle=lifecycle,
        ingestion=DocumentIngestionService(lifecycle),
        reconciliation=ReconciliationService(lifecycle, artifact_store=artifact_store),
        gate=GateCheckpoint(lifecycle, artifact_store, checklist=settings.gate_checklist),
    )


_services: Optional[FulfillmentServices] = None


def get_services() -> FulfillmentServices:
    """Process-wide services, built from the environment on first use."""
    global _services
    if _services is None:
        _services = build_services()
    return _services


def set_services(services: Optional[FulfillmentServices]) -> None:
    """Install (or clear) the process-wide services; used by tests."""
    global _services
    _services = services
