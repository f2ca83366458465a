"""
WIQL text for the queries the dashboard runs.

Every query excludes removed work items. Values are escaped by doubling single
quotes, the only escaping WIQL string literals need.
"""
import logging
import re
from typing import Optional

from services.errors import InvalidFilter
from services.models import ItemFilter

logger = logging.getLogger(__name__)

WORK_ITEM_TYPES = ["Epic", "Feature", "User Story", "Task", "Bug"]
# Types shown when the tree root is "All"
TREE_ROOT_TYPES = ["Epic", "Feature", "User Story", "Task"]

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_NUMERIC = re.compile(r"[0-9]+")


def escape(value: str) -> str:
    """Escape single quotes by doubling them"""
    return value.replace("'", "''")


def _clean(name: str, value: Optional[str], required: bool = False) -> Optional[str]:
    if value is None:
        if required:
            raise InvalidFilter(f"{name} is required")
        return None
    if not isinstance(value, str):
        raise InvalidFilter(f"{name} must be a string")
    value = value.strip()
    if not value:
        raise InvalidFilter(f"{name} must not be blank")
    if _CONTROL_CHARS.search(value):
        raise InvalidFilter(f"{name} contains control characters")
    return value


def _check_type(work_item_type: Optional[str]) -> Optional[str]:
    work_item_type = _clean("type", work_item_type)
    if work_item_type is not None and work_item_type not in WORK_ITEM_TYPES:
        raise InvalidFilter(
            f"Invalid work item type: {work_item_type}. Valid types are: {WORK_ITEM_TYPES}"
        )
    return work_item_type


def build_iteration_filter(iteration_path: Optional[str], assigned_to: Optional[str] = None,
                           work_item_type: Optional[str] = None) -> ItemFilter:
    """
    Validate the pieces of a sprint filter

    Args:
        iteration_path: Iteration path, e.g. "Project\\Sprint 1"
        assigned_to: Optional assignee display name or unique name
        work_item_type: Optional work item type

    Returns:
        ItemFilter ready for iteration_query

    Raises:
        InvalidFilter: if any value is blank, has control characters or an unknown type
    """
    return ItemFilter(
        iteration_path=_clean("iteration path", iteration_path, required=True),
        assigned_to=_clean("assignedTo", assigned_to),
        work_item_type=_check_type(work_item_type),
    )


def iteration_query(item_filter: ItemFilter) -> str:
    query_parts = [
        f"[System.IterationPath] = '{escape(item_filter.iteration_path)}'",
        "[System.State] <> 'Removed'",
    ]
    if item_filter.assigned_to:
        query_parts.append(f"[System.AssignedTo] = '{escape(item_filter.assigned_to)}'")
    if item_filter.work_item_type:
        query_parts.append(f"[System.WorkItemType] = '{escape(item_filter.work_item_type)}'")

    where_clause = " AND ".join(query_parts)
    return (
        "SELECT [System.Id], [System.Title], [System.State], [System.AssignedTo], [System.WorkItemType] "
        f"FROM WorkItems WHERE {where_clause} "
        "ORDER BY [System.WorkItemType], [System.State]"
    )


def type_query(work_item_type: Optional[str] = "Epic") -> str:
    """Query for every non-removed item of a type; "All" means every tree root type"""
    if work_item_type == "All":
        types = ", ".join(f"'{t}'" for t in TREE_ROOT_TYPES)
        type_filter = f"[System.WorkItemType] IN ({types})"
    else:
        work_item_type = _check_type(work_item_type or "Epic")
        type_filter = f"[System.WorkItemType] = '{escape(work_item_type)}'"

    return (
        "SELECT [System.Id], [System.Title], [System.State], [System.WorkItemType], "
        "[System.AssignedTo], [System.AreaPath], [System.IterationPath] "
        f"FROM WorkItems WHERE {type_filter} AND [System.State] <> 'Removed' "
        "ORDER BY [System.WorkItemType], [System.CreatedDate] DESC"
    )


def epics_query() -> str:
    return (
        "SELECT [System.Id], [System.Title], [System.State], [System.AreaPath], [System.IterationPath] "
        "FROM WorkItems WHERE [System.WorkItemType] = 'Epic' AND [System.State] <> 'Removed' "
        "ORDER BY [System.CreatedDate] DESC"
    )


def children_query(parent_id: int) -> str:
    return (
        "SELECT [System.Id], [System.Title], [System.State], [System.WorkItemType], [System.AssignedTo] "
        "FROM WorkItemLinks "
        f"WHERE ([Source].[System.Id] = {int(parent_id)}) "
        "AND ([System.Links.LinkType] = 'System.LinkTypes.Hierarchy-Forward') "
        "MODE (MustContain)"
    )


def search_query(text: str, work_item_type: Optional[str] = "All") -> str:
    type_filter = ""
    if work_item_type and work_item_type != "All":
        type_filter = f" AND [System.WorkItemType] = '{escape(_check_type(work_item_type))}'"

    return (
        "SELECT [System.Id], [System.Title], [System.State], [System.WorkItemType], [System.AssignedTo] "
        f"FROM WorkItems WHERE [System.Title] CONTAINS '{escape(text)}' "
        f"AND [System.State] <> 'Removed'{type_filter} "
        "ORDER BY [System.WorkItemType], [System.ChangedDate] DESC"
    )


def parse_numeric_query(text: Optional[str]) -> Optional[int]:
    """
    Return the id a search text stands for, or None.

    A purely numeric search is a direct id lookup and skips the title search.
    """
    if not text:
        return None
    text = text.strip()
    if _NUMERIC.fullmatch(text):
        logger.debug(f"Search text {text!r} treated as work item id")
        return int(text)
    return None
