"""Document source interface.

A ``DocumentSource`` delivers pre-normalized PR and work item records for one
organization/project. Tracker-specific clients (Azure DevOps and friends)
implement it outside this package.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Sequence

from toki_search.common.errors import SearchError
from toki_search.search.models import PullRequestDocument, WorkItemDocument


class DocumentSourceError(SearchError):
    """Raised when records cannot be fetched from an external source."""
    pass


class DocumentSource(ABC):
    """Abstract base class for document sources."""

    @abstractmethod
    async def fetch_pull_requests(self, org: str, project: str) -> List[PullRequestDocument]:
        """Fetch all pull requests of a project."""
        pass

    @abstractmethod
    async def fetch_work_items(
        self,
        org: str,
        project: str,
        since: Optional[datetime] = None,
    ) -> List[WorkItemDocument]:
        """Fetch work items of a project, optionally only those updated since ``since``."""
        pass


class StaticDocumentSource(DocumentSource):
    """Source serving fixed in-memory records.

    Useful for seeding a local index and for tests. Records are filtered by
    project; the organization is taken as given.
    """

    def __init__(
        self,
        pull_requests: Sequence[PullRequestDocument] = (),
        work_items: Sequence[WorkItemDocument] = (),
    ):
        self.pull_requests = list(pull_requests)
        self.work_items = list(work_items)

    async def fetch_pull_requests(self, org: str, project: str) -> List[PullRequestDocument]:
        return [pr for pr in self.pull_requests if pr.project == project]

    async def fetch_work_items(
        self,
        org: str,
        project: str,
        since: Optional[datetime] = None,
    ) -> List[WorkItemDocument]:
        return [
            wi for wi in self.work_items
            if wi.project == project and (since is None or wi.updated_at >= since)
        ]
