from .base import StorageSurface, translate_error
from .tables import TableStore, TableTransactionAction, TransactionActionType

__all__ = [
    "StorageSurface",
    "TableStore",
    "TableTransactionAction",
    "TransactionActionType",
    "translate_error",
]
