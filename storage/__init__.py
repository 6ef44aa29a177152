from .s3 import ObjectInfo, ObjectNotFound, ObjectStoreError, S3ObjectStore, get_object_store

__all__ = [
    "ObjectInfo",
    "ObjectNotFound",
    "ObjectStoreError",
    "S3ObjectStore",
    "get_object_store",
]
