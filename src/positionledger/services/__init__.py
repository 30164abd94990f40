"""Position ledger services package.

Each service is independently testable and talks to its collaborators
through Protocol interfaces using dependency injection.
"""

from positionledger.services.ledger import ILedgerService, LedgerService

__all__: list[str] = [
    "LedgerService",
    "ILedgerService",
]
