from visual_dataset.infra.repositories import (
    InsertError,
    LoadError,
    RepositoryError,
    UpdateError,
    UploadError,
)

__all__ = [
    "RepositoryError",
    "LoadError",
    "UploadError",
    "InsertError",
    "UpdateError",
]
