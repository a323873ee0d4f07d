"""Models module - imports all models for SQLModel registration."""

# Import all models so SQLModel can register them
from recindex.models.recording import Recording, QuarantinedFile
from recindex.models.index_checkpoint import IndexCheckpoint
from recindex.models.index_job import IndexJob

__all__ = [
    "Recording",
    "QuarantinedFile",
    "IndexCheckpoint",
    "IndexJob",
]
