"""Request/response command router over the bookmark store.

Wire format:
  Request:   {"action": "<name>", ...payload}
  Response:  {"ok": true[, "data": ...]} or {"ok": false, "error": "<description>"}

Every request is decoded into one of a closed set of request types before
it reaches the store, and every outcome, including failures, comes back as
a response envelope.
"""
import sys
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from video_bookmarks.errors import (
    BookmarkError,
    ConstraintViolation,
    MalformedInterchange,
    StorageError,
    StorageUnavailable,
    ValidationError,
)
from video_bookmarks.interchange import parse_interchange, validate_items
from video_bookmarks.store import BookmarkStore


UNKNOWN_ACTION = "unknown_action"

# SQLite INTEGER range
MAX_ID = 2 ** 63 - 1


@dataclass(frozen=True)
class AddBookmark:
    record: Dict[str, Any]


@dataclass(frozen=True)
class ListAll:
    subject_id: Optional[str] = None


@dataclass(frozen=True)
class UpdateBookmark:
    bookmark_id: int
    patch: Dict[str, Any]


@dataclass(frozen=True)
class DeleteBookmark:
    bookmark_id: int


@dataclass(frozen=True)
class ClearBookmarks:
    pass


@dataclass(frozen=True)
class ImportBookmarks:
    items: List[Dict[str, Any]]


@dataclass(frozen=True)
class SetSubjectTags:
    subject_id: str
    tags: List[str]


Request = Union[
    AddBookmark,
    ListAll,
    UpdateBookmark,
    DeleteBookmark,
    ClearBookmarks,
    ImportBookmarks,
    SetSubjectTags,
]

REQUEST_TYPES = (
    AddBookmark,
    ListAll,
    UpdateBookmark,
    DeleteBookmark,
    ClearBookmarks,
    ImportBookmarks,
    SetSubjectTags,
)

# Action names used by the original browser extension
ACTION_ALIASES = {
    "addBookmark": "add-bookmark",
    "getAllBookmarks": "list-all",
    "updateBookmark": "update-bookmark",
    "deleteBookmark": "delete-bookmark",
    "clearBookmarks": "clear-bookmarks",
    "importBookmarks": "import-bookmarks",
    "setSubjectTags": "set-subject-tags",
}


def _parse_id(message: Dict[str, Any], action: str) -> int:
    value = message.get("id")
    if isinstance(value, bool):
        value = None
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if not isinstance(value, int):
        raise ValidationError(f"{action} requires an integer 'id'")
    if not -MAX_ID - 1 <= value <= MAX_ID:
        raise ValidationError(f"{action} 'id' is out of range")
    return value


def _parse_subject_id(message: Dict[str, Any]) -> Optional[str]:
    subject_id = message.get("subjectId")
    if subject_id is None:
        subject_id = message.get("videoId")
    return subject_id or None


def parse_request(message: Any) -> Optional[Request]:
    """Decode a wire message into a request.

    Returns:
        The request, or None if the action is not recognized

    Raises:
        ValidationError: If a known action is missing part of its payload
        MalformedInterchange: If an import payload is not an array of objects
    """
    if not isinstance(message, dict):
        return None

    action = message.get("action")
    action = ACTION_ALIASES.get(action, action)

    if action == "add-bookmark":
        record = message.get("data")
        if not isinstance(record, dict):
            raise ValidationError("add-bookmark requires a 'data' object")
        return AddBookmark(record=record)

    if action == "list-all":
        return ListAll(subject_id=_parse_subject_id(message))

    if action == "update-bookmark":
        patch = message.get("patch") or {}
        if not isinstance(patch, dict):
            raise ValidationError("update-bookmark 'patch' must be an object")
        return UpdateBookmark(bookmark_id=_parse_id(message, action), patch=patch)

    if action == "delete-bookmark":
        return DeleteBookmark(bookmark_id=_parse_id(message, action))

    if action == "clear-bookmarks":
        return ClearBookmarks()

    if action == "import-bookmarks":
        if isinstance(message.get("text"), str):
            items = parse_interchange(message["text"])
        else:
            items = validate_items(message.get("items") or [])
        return ImportBookmarks(items=items)

    if action == "set-subject-tags":
        subject_id = _parse_subject_id(message)
        tags = message.get("tags")
        if not subject_id:
            raise ValidationError("set-subject-tags requires a 'subjectId'")
        if not isinstance(tags, list):
            raise ValidationError("set-subject-tags requires a 'tags' list")
        return SetSubjectTags(subject_id=subject_id, tags=tags)

    return None


def ok(data: Any = None) -> Dict[str, Any]:
    response: Dict[str, Any] = {"ok": True}
    if data is not None:
        response["data"] = data
    return response


def failure(error: str) -> Dict[str, Any]:
    return {"ok": False, "error": error}


def _describe_error(error: BookmarkError) -> str:
    """User-facing description; storage failures get stable opaque codes."""
    if isinstance(error, StorageUnavailable):
        return "storage_unavailable"
    if isinstance(error, ConstraintViolation):
        return "constraint_violation"
    if isinstance(error, StorageError):
        return "storage_error"
    return str(error)


class CommandRouter:
    """Dispatches requests to a BookmarkStore and wraps results in envelopes."""

    def __init__(self, store: BookmarkStore):
        self.store = store
        self._handlers: Dict[type, Callable[[Any], Awaitable[Dict[str, Any]]]] = {
            AddBookmark: self._add,
            ListAll: self._list_all,
            UpdateBookmark: self._update,
            DeleteBookmark: self._delete,
            ClearBookmarks: self._clear,
            ImportBookmarks: self._import,
            SetSubjectTags: self._set_subject_tags,
        }
        missing = [t.__name__ for t in REQUEST_TYPES if t not in self._handlers]
        if missing:
            raise TypeError(f"CommandRouter has no handler for: {', '.join(missing)}")

    async def dispatch(self, message: Any) -> Dict[str, Any]:
        """Decode and execute a wire message. Never raises."""
        try:
            request = parse_request(message)
        except BookmarkError as e:
            return failure(_describe_error(e))

        if request is None:
            action = message.get("action") if isinstance(message, dict) else None
            print(f"[CommandRouter] Unknown action: {action!r}", file=sys.stderr)
            return failure(UNKNOWN_ACTION)

        return await self.handle(request)

    async def handle(self, request: Request) -> Dict[str, Any]:
        """Execute an already decoded request."""
        handler = self._handlers.get(type(request))
        if handler is None:
            return failure(UNKNOWN_ACTION)

        try:
            return await handler(request)
        except (ValidationError, MalformedInterchange) as e:
            return failure(str(e))
        except StorageError as e:
            print(
                f"[CommandRouter] {type(request).__name__} failed: {type(e).__name__}: {e}",
                file=sys.stderr,
            )
            return failure(_describe_error(e))

    async def _add(self, request: AddBookmark) -> Dict[str, Any]:
        bookmark_id = await self.store.add(request.record)
        return ok({"id": bookmark_id})

    async def _list_all(self, request: ListAll) -> Dict[str, Any]:
        if request.subject_id:
            return ok(await self.store.get_by_subject(request.subject_id))
        return ok(await self.store.get_all())

    async def _update(self, request: UpdateBookmark) -> Dict[str, Any]:
        found = await self.store.update(request.bookmark_id, request.patch)
        return ok({"found": found})

    async def _delete(self, request: DeleteBookmark) -> Dict[str, Any]:
        found = await self.store.delete(request.bookmark_id)
        return ok({"found": found})

    async def _clear(self, request: ClearBookmarks) -> Dict[str, Any]:
        return ok({"cleared": await self.store.clear()})

    async def _import(self, request: ImportBookmarks) -> Dict[str, Any]:
        return ok({"imported": await self.store.bulk_import(request.items)})

    async def _set_subject_tags(self, request: SetSubjectTags) -> Dict[str, Any]:
        updated = await self.store.set_subject_tags(request.subject_id, request.tags)
        return ok({"updated": updated})
