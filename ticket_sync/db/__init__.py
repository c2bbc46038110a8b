from .engine import Database
from .models import Base, ImapCredentialRow, SyncHistoryRow
from .repository import CredentialRepository

__all__ = ["Base", "CredentialRepository", "Database", "ImapCredentialRow", "SyncHistoryRow"]
