from typing import List, Optional


class InvalidFilter(ValueError):
    """Raised when a seed filter cannot be turned into a query"""
    pass


class ConfigurationError(Exception):
    """Raised when the Azure DevOps coordinates are missing"""
    pass


class RemoteStoreError(Exception):
    """
    Any transport, authentication or query failure from Azure DevOps.

    ``ids`` holds the work item ids of the batch that was being fetched when
    the failure happened, or None when the failing call was not a batch fetch.
    """

    def __init__(self, message: str, ids: Optional[List[int]] = None):
        super().__init__(message)
        self.ids = ids

    def __str__(self) -> str:
        message = super().__str__()
        if self.ids:
            return f"{message} (ids: {', '.join(map(str, self.ids))})"
        return message


class AzureDevOpsAuthenticationError(RemoteStoreError):
    """Custom exception for Azure DevOps authentication errors"""
    pass
