from twinwatch.db.repository import DocumentRepository, RepositoryError

__all__ = ["DocumentRepository", "RepositoryError"]
