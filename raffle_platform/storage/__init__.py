from ._schema import SCHEMA_VERSION, SCHEMA_SQL
from .rounds import RoundRepo
from .entries import EntryRepo
from .draws import DrawRepo
from .manager import StorageManager

__all__ = [
    "SCHEMA_VERSION",
    "SCHEMA_SQL",
    "RoundRepo",
    "EntryRepo",
    "DrawRepo",
    "StorageManager",
]
