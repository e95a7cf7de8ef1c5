"""Storage layer - Database schemas and repositories."""

from kizo_indexer.storage.database import (
    DatabaseManager,
    DatabaseUnavailableError,
    create_async_db_engine,
    create_async_session_factory,
    init_async_db,
)
from kizo_indexer.storage.models import (
    Base,
    BetModel,
    MarketModel,
    MarketResolutionModel,
    ProtocolFeeModel,
    WinningsClaimModel,
    YieldDepositModel,
)
from kizo_indexer.storage.repos import (
    BatchRows,
    BatchWriteResult,
    BetDTO,
    EventRowRepository,
    MarketDTO,
    MarketResolutionDTO,
    ProtocolFeeDTO,
    WinningsClaimDTO,
    WriteResult,
    YieldDepositDTO,
)

__all__ = [
    "Base",
    "BatchRows",
    "BatchWriteResult",
    "BetDTO",
    "BetModel",
    "DatabaseManager",
    "DatabaseUnavailableError",
    "EventRowRepository",
    "MarketDTO",
    "MarketModel",
    "MarketResolutionDTO",
    "MarketResolutionModel",
    "ProtocolFeeDTO",
    "ProtocolFeeModel",
    "WinningsClaimDTO",
    "WinningsClaimModel",
    "WriteResult",
    "YieldDepositDTO",
    "YieldDepositModel",
    "create_async_db_engine",
    "create_async_session_factory",
    "init_async_db",
]
