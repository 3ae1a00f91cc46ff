"""Grouped, filtered, sorted and paginated views over bookmark records.

Everything here is a pure function of the records and a ``ViewState``. The
engine keeps nothing between calls: the caller owns the state and feeds the
returned one back in on the next render.

Flow:
  1. filter by search text and tag
  2. order by ``addedAt`` (newest or oldest first, stable)
  3. group by subject, in first-seen order
  4. paginate the groups
  5. sort the members of each group on the page by that subject's sort state
"""
import functools
import locale
import math
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple

from video_bookmarks.schema import default_subject_title, display_color, time_label


NEWEST_FIRST = "newest-first"
OLDEST_FIRST = "oldest-first"
GROUP_SORT_ORDERS = (NEWEST_FIRST, OLDEST_FIRST)

SORT_KEYS = ("addedAt", "time", "note")
SORT_DIRECTIONS = ("asc", "desc")

PAGE_SIZES = (5, 10, 20, 30)
DEFAULT_PAGE_SIZE = 5


@dataclass(frozen=True)
class SubjectSort:
    """Sort state of a single subject group."""
    sort_key: str = "addedAt"
    sort_direction: str = "desc"

    def __post_init__(self):
        if self.sort_key not in SORT_KEYS:
            raise ValueError(f"Unknown sort key: {self.sort_key}")
        if self.sort_direction not in SORT_DIRECTIONS:
            raise ValueError(f"Unknown sort direction: {self.sort_direction}")


def default_direction(sort_key: str) -> str:
    return "desc" if sort_key == "addedAt" else "asc"


@dataclass(frozen=True)
class ViewState:
    """Every filter, sort and pagination parameter of one rendered view."""
    search_query: str = ""
    tag_filter: Optional[str] = None
    group_sort_order: str = NEWEST_FIRST
    subject_sorts: Dict[str, SubjectSort] = field(default_factory=dict)
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE

    def __post_init__(self):
        if self.group_sort_order not in GROUP_SORT_ORDERS:
            raise ValueError(f"Unknown group sort order: {self.group_sort_order}")
        if self.page_size not in PAGE_SIZES:
            raise ValueError(f"Page size must be one of {PAGE_SIZES}, got {self.page_size}")

    def sort_for(self, subject_id: str) -> SubjectSort:
        return self.subject_sorts.get(subject_id) or SubjectSort()


@dataclass
class BookmarkGroup:
    """All displayed bookmarks of one subject."""
    subject_id: str
    title: str
    tags: List[str]
    bookmarks: List[Dict[str, Any]]


@dataclass
class BookmarkView:
    """One page of grouped bookmarks plus pagination metadata."""
    groups: List[BookmarkGroup]
    page: int
    total_pages: int
    page_size: int
    total_groups: int
    state: ViewState


# ----------------------------------------------------------------------
# Pipeline steps
# ----------------------------------------------------------------------

def record_tags(record: Dict[str, Any]) -> List[str]:
    """Tags of a record; anything but a list counts as no tags."""
    tags = record.get("tags")
    if not isinstance(tags, list):
        return []
    return [str(tag) for tag in tags]


def _lower_tags(record: Dict[str, Any]) -> List[str]:
    return [tag.lower() for tag in record_tags(record)]


def filter_records(
    records: List[Dict[str, Any]],
    search_query: str = "",
    tag_filter: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Keep records matching the search text and the tag filter.

    The search text matches as a case-insensitive substring of the subject
    title, note or subtitle, or as an exact (case-insensitive) tag.
    """
    query = (search_query or "").lower()
    wanted_tag = tag_filter.lower() if tag_filter is not None else None

    matches = []
    for record in records:
        tags = _lower_tags(record)
        if query:
            searchable = (
                (record.get("subjectTitle") or "").lower(),
                (record.get("note") or "").lower(),
                (record.get("subtitle") or "").lower(),
            )
            if not any(query in text for text in searchable) and query not in tags:
                continue
        if wanted_tag is not None and wanted_tag not in tags:
            continue
        matches.append(record)

    return matches


def _added_at(record: Dict[str, Any]) -> float:
    return _as_number(record.get("addedAt"))


def order_by_added(records: List[Dict[str, Any]], order: str = NEWEST_FIRST) -> List[Dict[str, Any]]:
    """Order records by ``addedAt``; equal timestamps keep their input order."""
    return sorted(records, key=_added_at, reverse=(order == NEWEST_FIRST))


def group_by_subject(records: List[Dict[str, Any]]) -> List[BookmarkGroup]:
    """Group records by subject in first-seen order.

    Title and tags of a group come from its first record only.
    """
    groups: Dict[str, BookmarkGroup] = {}
    for record in records:
        subject_id = record.get("subjectId")
        group = groups.get(subject_id)
        if group is None:
            group = BookmarkGroup(
                subject_id=subject_id,
                title=record.get("subjectTitle") or default_subject_title(subject_id),
                tags=record_tags(record),
                bookmarks=[],
            )
            groups[subject_id] = group
        group.bookmarks.append(record)

    return list(groups.values())


def paginate_groups(
    groups: List[BookmarkGroup],
    page: int,
    page_size: int,
) -> Tuple[List[BookmarkGroup], int]:
    """Slice one page of groups.

    Returns:
        (groups on the page, total pages). Pages outside the range give an
        empty slice.
    """
    total_pages = math.ceil(len(groups) / page_size) if page_size > 0 else 0
    if page < 1 or page_size <= 0:
        return [], total_pages

    start = (page - 1) * page_size
    return groups[start:start + page_size], total_pages


def _as_number(value: Any) -> float:
    """Coerce a value to a number, with anything unparseable counting as 0."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return 0 if value != value else value
    if isinstance(value, str):
        try:
            number = float(value.strip() or 0)
        except ValueError:
            return 0
        return 0 if number != number else number
    return 0


def _compare(a: Any, b: Any) -> int:
    if isinstance(a, str) and isinstance(b, str):
        return locale.strcoll(a, b)
    a_num, b_num = _as_number(a), _as_number(b)
    return (a_num > b_num) - (a_num < b_num)


def sort_group(bookmarks: List[Dict[str, Any]], sort: SubjectSort) -> List[Dict[str, Any]]:
    """Sort the members of one group by the subject's key and direction."""
    sign = 1 if sort.sort_direction == "asc" else -1

    def comparator(a: Dict[str, Any], b: Dict[str, Any]) -> int:
        return sign * _compare(a.get(sort.sort_key), b.get(sort.sort_key))

    return sorted(bookmarks, key=functools.cmp_to_key(comparator))


def build_view(records: List[Dict[str, Any]], state: ViewState) -> BookmarkView:
    """Run the whole pipeline for one render.

    Args:
        records: Full record set, in any order
        state: Caller-owned view state

    Returns:
        The page of groups. ``view.state`` is ``state`` with a sort entry
        remembered for every subject shown on the page.
    """
    filtered = filter_records(records, state.search_query, state.tag_filter)
    ordered = order_by_added(filtered, state.group_sort_order)
    groups = group_by_subject(ordered)
    page_groups, total_pages = paginate_groups(groups, state.page, state.page_size)

    subject_sorts = dict(state.subject_sorts)
    for group in page_groups:
        sort = subject_sorts.setdefault(group.subject_id, SubjectSort())
        group.bookmarks = sort_group(group.bookmarks, sort)

    return BookmarkView(
        groups=page_groups,
        page=state.page,
        total_pages=total_pages,
        page_size=state.page_size,
        total_groups=len(groups),
        state=replace(state, subject_sorts=subject_sorts),
    )


# ----------------------------------------------------------------------
# State transitions driven by the presentation layer
# ----------------------------------------------------------------------

def set_search_query(state: ViewState, query: str) -> ViewState:
    """Search text replaces any tag filter."""
    return replace(state, search_query=query or "", tag_filter=None, page=1)


def toggle_tag_filter(state: ViewState, tag: Optional[str]) -> ViewState:
    """Select a tag, or clear the filter when the same tag is chosen again."""
    new_filter = None if tag is None or state.tag_filter == tag else tag
    return replace(state, tag_filter=new_filter, search_query="", page=1)


def toggle_group_sort_order(state: ViewState) -> ViewState:
    order = OLDEST_FIRST if state.group_sort_order == NEWEST_FIRST else NEWEST_FIRST
    return replace(state, group_sort_order=order, page=1)


def set_page_size(state: ViewState, page_size: int) -> ViewState:
    return replace(state, page_size=page_size, page=1)


def set_page(state: ViewState, page: int) -> ViewState:
    return replace(state, page=page)


def clamp_page(state: ViewState, total_pages: int) -> ViewState:
    page = min(max(state.page, 1), max(total_pages, 1))
    return replace(state, page=page)


def toggle_subject_sort(state: ViewState, subject_id: str, sort_key: str) -> ViewState:
    """Header click on a group's column.

    The same key flips the direction; a new key starts ascending, except
    ``addedAt`` which starts descending.
    """
    current = state.sort_for(subject_id)
    if current.sort_key == sort_key:
        direction = "asc" if current.sort_direction == "desc" else "desc"
        new_sort = SubjectSort(sort_key, direction)
    else:
        new_sort = SubjectSort(sort_key, default_direction(sort_key))

    subject_sorts = dict(state.subject_sorts)
    subject_sorts[subject_id] = new_sort
    return replace(state, subject_sorts=subject_sorts)


# ----------------------------------------------------------------------
# Helpers for outer surfaces
# ----------------------------------------------------------------------

def collect_tags(records: List[Dict[str, Any]]) -> List[str]:
    """Distinct non-empty tags across all records, sorted."""
    tags = set()
    for record in records:
        for tag in record_tags(record):
            tag = tag.strip()
            if tag:
                tags.add(tag)
    return sorted(tags)


def view_to_dict(view: BookmarkView) -> Dict[str, Any]:
    """JSON-ready projection of a view."""
    return {
        "page": view.page,
        "totalPages": view.total_pages,
        "pageSize": view.page_size,
        "totalGroups": view.total_groups,
        "groups": [
            {
                "subjectId": group.subject_id,
                "title": group.title,
                "tags": group.tags,
                "sort": {
                    "key": view.state.sort_for(group.subject_id).sort_key,
                    "direction": view.state.sort_for(group.subject_id).sort_direction,
                },
                "bookmarks": [
                    {**bookmark, "timeLabel": time_label(bookmark), "color": display_color(bookmark)}
                    for bookmark in group.bookmarks
                ],
            }
            for group in view.groups
        ],
    }
