from dataclasses import dataclass
from typing import Optional

from .catalog import CatalogManager
from .circulation import BorrowEngine
from .config import Settings
from .database import Database
from .membership import MembershipManager
from .security import AuthGate
from .stats import StatsService


@dataclass
class LibraryServices:
    """Everything a request handler or CLI command needs, wired around one Database handle."""

    settings: Settings
    database: Database
    gate: AuthGate
    catalog: CatalogManager
    membership: MembershipManager
    circulation: BorrowEngine
    stats: StatsService

    def close(self) -> None:
        self.database.close()


def build_services(settings: Settings, database: Optional[Database] = None) -> LibraryServices:
    """Open (and initialize) the database, then build the components in dependency order."""
    database = database or Database(settings.database_file, timeout=settings.database_timeout)
    database.initialize()
    gate = AuthGate(settings)
    return LibraryServices(
        settings=settings,
        database=database,
        gate=gate,
        catalog=CatalogManager(database, settings),
        membership=MembershipManager(database, settings, gate),
        circulation=BorrowEngine(database, settings),
        stats=StatsService(database),
    )
