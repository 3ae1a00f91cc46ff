"""Error kinds raised by the bookmark store and its collaborators."""


class BookmarkError(Exception):
    """Base class for every bookmark error."""


class ValidationError(BookmarkError):
    """A record or patch is missing a required field or touches an immutable one."""


class MalformedInterchange(BookmarkError):
    """An import payload is not a JSON array of objects."""


class StorageError(BookmarkError):
    """The storage engine failed (I/O, quota, failed commit)."""


class StorageUnavailable(StorageError):
    """The database could not be opened, e.g. it is locked by another handle."""


class ConstraintViolation(StorageError):
    """A uniqueness or integrity constraint was violated."""
