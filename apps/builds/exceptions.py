"""Errors raised by the build repositories.

Aggregate reads skip ``NotFound`` and ``CorruptRecord`` per entry; point
lookups and writes always let them propagate. Nothing here is retried.
"""


class BuildStoreError(Exception):
    pass


class NotFound(BuildStoreError):
    """Unknown bundle_id, or the requested record/binary does not exist."""


class CorruptRecord(BuildStoreError):
    """A stored metadata or index document could not be parsed."""


class StorageUnavailable(BuildStoreError):
    """I/O or database connection failure."""


class PartialUploadFailure(BuildStoreError):
    """A write step failed after an earlier one succeeded.

    The artifacts already written stay on disk as orphans, invisible to reads.
    """


class DuplicateUpload(BuildStoreError):
    """The upload_id is already taken."""
