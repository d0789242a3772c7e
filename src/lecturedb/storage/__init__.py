"""
Private object storage access: reference resolution, signing, upload and delete.
"""
from lecturedb.storage.resolver import ALLOWED_VIDEO_TYPES, MAX_UPLOAD_BYTES
from lecturedb.storage.resolver import ObjectResolver, SignedURLResult
from lecturedb.storage.resolver import is_url_reference, make_object_key
from lecturedb.storage.resolver import resolve_key

__all__ = [
    'ALLOWED_VIDEO_TYPES',
    'MAX_UPLOAD_BYTES',
    'ObjectResolver',
    'SignedURLResult',
    'is_url_reference',
    'make_object_key',
    'resolve_key',
]
