from __future__ import annotations

import threading
from typing import Dict, List, Optional, Sequence
from unittest.mock import MagicMock

import pytest

from app import create_app
from services.config import Settings
from services.errors import RemoteStoreError
from services.models import WorkItem

ORG_URL = "https://dev.azure.com/contoso/_apis/wit/workItems"


def raw_item(item_id: int, parent_id: Optional[int] = None, title: str = "",
             work_item_type: str = "Task", children: Sequence[int] = ()) -> dict:
    """A work item record shaped like the Azure DevOps batch response"""
    relations = []
    if parent_id is not None:
        relations.append({
            "rel": "System.LinkTypes.Hierarchy-Reverse",
            "url": f"{ORG_URL}/{parent_id}",
            "attributes": {"name": "Parent"},
        })
    for child_id in children:
        relations.append({
            "rel": "System.LinkTypes.Hierarchy-Forward",
            "url": f"{ORG_URL}/{child_id}",
            "attributes": {"name": "Child"},
        })
    return {
        "id": item_id,
        "url": f"{ORG_URL}/{item_id}",
        "fields": {
            "System.Title": title or f"Item {item_id}",
            "System.WorkItemType": work_item_type,
            "System.State": "Active",
        },
        "relations": relations,
    }


class FakeStore:
    """In-memory stand-in for AzureDevOpsService's find_ids/fetch_by_ids"""

    def __init__(self, records: Optional[Dict[int, dict]] = None, query_ids: Sequence[int] = ()):
        self.records = dict(records or {})
        self.query_ids = list(query_ids)
        self.calls: List[List[int]] = []
        self.queries: List[str] = []
        self.fail_on: Optional[int] = None
        self._lock = threading.Lock()

    def add(self, item_id: int, parent_id: Optional[int] = None, **kwargs) -> None:
        self.records[item_id] = raw_item(item_id, parent_id, **kwargs)

    def find_ids(self, query: str) -> List[int]:
        self.queries.append(query)
        return list(self.query_ids)

    def fetch_by_ids(self, ids, include_relations=True) -> List[WorkItem]:
        assert len(ids) <= 200
        with self._lock:
            self.calls.append(list(ids))
        if self.fail_on is not None and self.fail_on in ids:
            raise RemoteStoreError("Azure DevOps API Error: 503 - Service Unavailable")
        return [WorkItem.from_dict(self.records[i]) for i in ids if i in self.records]

    @property
    def fetched_ids(self) -> List[int]:
        return [i for call in self.calls for i in call]


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def settings() -> Settings:
    return Settings(organization="contoso", project="Fabrikam", pat="secret", fetch_workers=1)


@pytest.fixture
def service() -> MagicMock:
    return MagicMock()


@pytest.fixture
def client(settings, service):
    flask_app = create_app(settings, service=service)
    flask_app.config["TESTING"] = True
    return flask_app.test_client()
