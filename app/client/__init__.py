from app.client.api import NotesAuthClient
from app.client.refresh import RefreshCoordinator, TokenStore

__all__ = ["NotesAuthClient", "RefreshCoordinator", "TokenStore"]
