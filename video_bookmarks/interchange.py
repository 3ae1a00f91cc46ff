"""JSON export/import of bookmark collections."""
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from video_bookmarks.errors import MalformedInterchange
from video_bookmarks.store import BookmarkStore


def export_bookmarks(records: List[Dict[str, Any]]) -> str:
    """Serialize records as a pretty-printed JSON array."""
    return json.dumps(records, indent=2, ensure_ascii=False)


def validate_items(items: Any) -> List[Dict[str, Any]]:
    """Check that decoded data is an array of objects.

    Raises:
        MalformedInterchange: If it is not
    """
    if not isinstance(items, list):
        raise MalformedInterchange("Invalid bookmark file: expected a JSON array of bookmarks")

    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise MalformedInterchange(
                f"Invalid bookmark file: item {index} is not an object"
            )

    return items


def parse_interchange(text: str) -> List[Dict[str, Any]]:
    """Parse exported JSON text back into records.

    Any ``id`` fields are kept here; the store drops them on import.

    Raises:
        MalformedInterchange: If the text is not JSON or not an array of objects
    """
    try:
        items = json.loads(text)
    except (TypeError, json.JSONDecodeError) as e:
        raise MalformedInterchange(f"Invalid bookmark file: not valid JSON ({e})") from e

    return validate_items(items)


async def export_to_file(store: BookmarkStore, path: Path) -> int:
    """Write every bookmark to ``path``. Returns the number exported."""
    records = await store.get_all()
    Path(path).write_text(export_bookmarks(records), encoding="utf-8")
    return len(records)


async def import_from_file(
    store: BookmarkStore,
    path: Path,
    policy: Optional[str] = None,
) -> int:
    """Import bookmarks from an exported file. Returns the number imported.

    Raises:
        FileNotFoundError: If the file doesn't exist
        MalformedInterchange: If the file content is malformed
    """
    text = Path(path).read_text(encoding="utf-8")
    return await store.bulk_import(parse_interchange(text), policy=policy)
