import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

# Relation urls end with the target work item id, e.g.
# https://dev.azure.com/org/_apis/wit/workItems/55
_TRAILING_ID = re.compile(r"(\d+)\s*$")


class RelationKind(Enum):
    PARENT = "System.LinkTypes.Hierarchy-Reverse"
    CHILD = "System.LinkTypes.Hierarchy-Forward"
    OTHER = "other"

    @classmethod
    def from_rel(cls, rel: Optional[str]) -> "RelationKind":
        for kind in (cls.PARENT, cls.CHILD):
            if rel == kind.value:
                return kind
        return cls.OTHER


@dataclass(frozen=True)
class Relation:
    """A link from one work item to another, parsed from the raw ``relations`` entry"""
    kind: RelationKind
    target_id: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Relation":
        kind = RelationKind.from_rel(data.get("rel"))
        url = data.get("url")
        target_id = None
        if isinstance(url, str):
            match = _TRAILING_ID.search(url)
            if match:
                target_id = int(match.group(1))
        return cls(kind=kind, target_id=target_id)


@dataclass(frozen=True)
class ItemFilter:
    """Seed filter for the sprint tree: an iteration plus optional predicates"""
    iteration_path: str
    assigned_to: Optional[str] = None
    work_item_type: Optional[str] = None


@dataclass
class WorkItem:
    """
    A work item as returned by Azure DevOps.

    The core only looks at ``id`` and ``relations``; ``fields`` and ``raw`` are
    carried through untouched so the API can hand the record back to the
    dashboard in the shape it came in.
    """
    id: int
    fields: Dict[str, Any] = field(default_factory=dict)
    relations: Tuple[Relation, ...] = ()
    url: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkItem":
        relations = tuple(
            Relation.from_dict(rel) for rel in (data.get("relations") or [])
            if isinstance(rel, dict)
        )
        return cls(
            id=int(data["id"]),
            fields=data.get("fields") or {},
            relations=relations,
            url=data.get("url"),
            raw=data,
        )

    @property
    def parent_id(self) -> Optional[int]:
        """Id of the parent work item, None for roots and unparsable parent links"""
        for relation in self.relations:
            if relation.kind is RelationKind.PARENT:
                return relation.target_id
        return None

    @property
    def child_ids(self) -> Tuple[int, ...]:
        return tuple(
            r.target_id for r in self.relations
            if r.kind is RelationKind.CHILD and r.target_id is not None
        )

    @property
    def title(self) -> str:
        return self.fields.get("System.Title", "")

    @property
    def work_item_type(self) -> str:
        return self.fields.get("System.WorkItemType", "")

    def to_dict(self) -> Dict[str, Any]:
        if self.raw:
            return self.raw
        data = {"id": self.id, "fields": self.fields}
        if self.url:
            data["url"] = self.url
        return data
