import requests
import base64
import json
import logging
from typing import List, Dict, Any, Optional, Sequence
import urllib.parse
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from services.errors import AzureDevOpsAuthenticationError, RemoteStoreError
from services.models import WorkItem
from services import wiql_builder

logger = logging.getLogger(__name__)

# Azure DevOps rejects batch work item requests with more than 200 ids
MAX_BATCH_SIZE = 200


class AzureDevOpsService:
    def __init__(self, pat: str, organization: str, project: str, api_version: str = "7.1",
                 timeout: float = 30, retries: int = 3,
                 session: Optional[requests.Session] = None):
        self.organization = organization
        self.project = project
        # URL-encode project name to handle spaces/special characters
        encoded_project = urllib.parse.quote(project)
        self.org_url = f"https://dev.azure.com/{organization}"
        self.project_url = f"{self.org_url}/{encoded_project}"
        self.base_url = f"{self.project_url}/_apis"
        self.api_version = api_version
        self.timeout = timeout

        encoded_pat = self._encode_pat(pat)
        self.headers = {
            "Authorization": f"Basic {encoded_pat}",
            "Content-Type": "application/json"
        }
        self.session = session or self._build_session(retries)
        self.session.headers.update(self.headers)

    def _encode_pat(self, pat: str) -> str:
        """Encode the Personal Access Token for use in the Authorization header"""
        # Azure DevOps expects the PAT to be encoded as "username:pat"
        # where username can be empty
        token = f":{pat}"
        encoded = base64.b64encode(token.encode()).decode('utf-8')
        return encoded

    def _build_session(self, retries: int) -> requests.Session:
        session = requests.Session()
        # WIQL is a POST but read-only, so it is safe to retry too
        retry_strategy = Retry(
            total=retries,
            backoff_factor=0.5,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET", "POST"],
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry_strategy, pool_connections=10, pool_maxsize=20)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return session

    def _request(self, method: str, url: str, params: Optional[Dict[str, Any]] = None,
                 payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Send a request to Azure DevOps and return the decoded JSON body

        Raises:
            AzureDevOpsAuthenticationError: on 401/403
            RemoteStoreError: on any other failure
        """
        params = dict(params or {})
        params.setdefault("api-version", self.api_version)
        logger.debug(f"{method} {url} params={params}")

        try:
            response = self.session.request(method, url, params=params, json=payload, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.error(f"Azure DevOps request failed: {method} {url}: {str(e)}")
            raise RemoteStoreError(f"Azure DevOps request failed: {str(e)}") from e

        if response.status_code in (401, 403):
            logger.error("Azure DevOps authentication failed - Invalid PAT token")
            raise AzureDevOpsAuthenticationError("Invalid Azure DevOps PAT token. Please check your credentials.")

        if not response.ok:
            error_msg = f"Azure DevOps API Error: {response.status_code} - {response.text}"
            logger.error(error_msg)
            raise RemoteStoreError(error_msg)

        try:
            return response.json()
        except (json.JSONDecodeError, ValueError) as e:
            logger.error(f"Failed to parse Azure DevOps response: {response.text}")
            raise RemoteStoreError("Failed to parse Azure DevOps response.") from e

    # ------------------------------------------------------------------
    # Primitive operations used by the hierarchy engine
    # ------------------------------------------------------------------

    def run_wiql(self, query: str) -> Dict[str, Any]:
        """Execute a WIQL query and return the raw response"""
        logger.debug(f"Executing WIQL query: {query}")
        return self._request("POST", f"{self.base_url}/wit/wiql", payload={"query": query})

    def find_ids(self, query: str) -> List[int]:
        """Resolve a WIQL work item query to the matching ids"""
        data = self.run_wiql(query)
        ids = [item["id"] for item in data.get("workItems", []) if item.get("id") is not None]
        logger.info(f"WIQL query matched {len(ids)} work items")
        return ids

    def fetch_by_ids(self, ids: Sequence[int], include_relations: bool = True) -> List[WorkItem]:
        """
        Fetch full records for at most 200 work item ids

        Ids that do not exist are left out of the result rather than failing the call.
        """
        if len(ids) > MAX_BATCH_SIZE:
            raise ValueError(f"At most {MAX_BATCH_SIZE} ids per request, got {len(ids)}")
        if not ids:
            return []

        params = {
            "ids": ",".join(map(str, ids)),
            # Missing ids come back as null instead of failing the whole batch
            "errorPolicy": "Omit",
        }
        if include_relations:
            params["$expand"] = "relations"

        data = self._request("GET", f"{self.base_url}/wit/workitems", params=params)
        items = [WorkItem.from_dict(raw) for raw in data.get("value", []) if raw]
        logger.info(f"Fetched {len(items)} of {len(ids)} requested work items")
        return items

    # ------------------------------------------------------------------
    # Pass-through reads for the dashboard
    # ------------------------------------------------------------------

    def get_work_item(self, work_item_id: int) -> Dict[str, Any]:
        return self._request(
            "GET", f"{self.base_url}/wit/workitems/{int(work_item_id)}",
            params={"$expand": "relations"},
        )

    def find_child_ids(self, parent_id: int) -> List[int]:
        """Ids of the direct children of a work item"""
        data = self.run_wiql(wiql_builder.children_query(parent_id))
        child_ids = []
        for relation in data.get("workItemRelations", []):
            target = relation.get("target")
            # The link query also returns the source item itself as a target with no source
            if target and target.get("id") is not None and target["id"] != int(parent_id):
                child_ids.append(target["id"])
        return child_ids

    def get_iterations(self, team: str, timeframe: Optional[str] = None) -> Dict[str, Any]:
        url = f"{self.project_url}/{urllib.parse.quote(team)}/_apis/work/teamsettings/iterations"
        params = {"$timeframe": timeframe} if timeframe else None
        return self._request("GET", url, params=params)

    def get_teams(self) -> Dict[str, Any]:
        url = f"{self.org_url}/_apis/projects/{urllib.parse.quote(self.project)}/teams"
        return self._request("GET", url)

    def get_team_members(self, team: str) -> Dict[str, Any]:
        url = (f"{self.org_url}/_apis/projects/{urllib.parse.quote(self.project)}"
               f"/teams/{urllib.parse.quote(team)}/members")
        return self._request("GET", url)

    def get_pull_requests(self, status: Optional[str] = "active", top: Optional[int] = 20,
                          project: Optional[str] = None) -> Dict[str, Any]:
        """Pull requests across every repository of the project"""
        project = project or self.project
        url = f"{self.org_url}/{urllib.parse.quote(project)}/_apis/git/pullrequests"
        params = {}
        if status:
            params["searchCriteria.status"] = status
        if top:
            params["$top"] = int(top)
        return self._request("GET", url, params=params)
