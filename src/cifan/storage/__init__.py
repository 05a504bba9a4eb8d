from cifan.storage.local import LocalFile, LocalObjectStorage

__all__ = ["LocalFile", "LocalObjectStorage"]
