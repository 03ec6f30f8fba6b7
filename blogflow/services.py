"""Service wiring shared by the HTTP API and the command line."""

from dataclasses import dataclass
from typing import Optional

from blogflow.collaboration.session_manager import SessionManager
from blogflow.config import Settings, get_settings
from blogflow.database import SupabaseDB
from blogflow.editing import EditCoordinator
from blogflow.publishing.publisher import Publisher
from blogflow.publishing.scheduler import PublishingScheduler
from blogflow.versioning.conflict_resolver import ConflictResolver
from blogflow.versioning.diff_engine import DiffEngine
from blogflow.versioning.version_store import VersionStore


@dataclass
class Services:
    db: SupabaseDB
    settings: Settings
    version_store: VersionStore
    resolver: ConflictResolver
    sessions: SessionManager
    coordinator: EditCoordinator
    publisher: Publisher
    scheduler: PublishingScheduler


def build_services(db: SupabaseDB, settings: Optional[Settings] = None) -> Services:
    """Construct every service around one database client."""
    settings = settings or get_settings()
    version_store = VersionStore(db, DiffEngine(), settings)
    resolver = ConflictResolver(version_store)
    sessions = SessionManager(db, settings)
    publisher = Publisher(db, version_store, settings)
    return Services(
        db=db,
        settings=settings,
        version_store=version_store,
        resolver=resolver,
        sessions=sessions,
        coordinator=EditCoordinator(version_store, sessions, resolver),
        publisher=publisher,
        scheduler=PublishingScheduler(db, publisher, settings),
    )


__all__ = ["Services", "build_services"]
