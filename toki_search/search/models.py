"""Data model for indexed documents, queries, and results.

One ``SearchDocument`` is stored per pull request or work item and is keyed by
``(source_type, source_id)``. ``indexed_at`` is owned by the store and is
refreshed on every upsert; it drives the staleness sweep, while ``updated_at``
carries the business timestamp from the source.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class SearchSource(str, Enum):
    """Kind of record a document was built from."""
    PR = "pr"
    WORK_ITEM = "work_item"

    def __str__(self) -> str:
        return self.value


@dataclass
class SearchDocument:
    """A searchable PR or work item as persisted in the document store."""
    source_type: SearchSource
    source_id: str
    external_id: int
    title: str
    organization: str
    project: str
    status: str
    created_at: datetime
    updated_at: datetime
    url: str
    description: Optional[str] = None
    content: Optional[str] = None
    repo_name: Optional[str] = None
    author_id: Optional[str] = None
    author_name: Optional[str] = None
    assigned_to_id: Optional[str] = None
    assigned_to_name: Optional[str] = None
    priority: Optional[int] = None
    item_type: Optional[str] = None
    is_draft: bool = False
    closed_at: Optional[datetime] = None
    parent_id: Optional[int] = None
    linked_work_items: List[int] = field(default_factory=list)
    embedding: Optional[List[float]] = None
    # Assigned by the store
    id: Optional[int] = None
    indexed_at: Optional[datetime] = None

    @property
    def key(self) -> Tuple[SearchSource, str]:
        return (self.source_type, self.source_id)


@dataclass
class SearchFilters:
    """Structured constraints extracted from a query.

    Every field is optional; ``None`` leaves that field unconstrained. List
    filters match when the document value is any of the listed values.
    """
    source_type: Optional[SearchSource] = None
    priority: Optional[List[int]] = None
    item_type: Optional[List[str]] = None
    status: Optional[List[str]] = None
    project: Optional[str] = None
    organization: Optional[str] = None
    repo_name: Optional[str] = None
    author: Optional[str] = None
    assigned_to: Optional[str] = None
    is_draft: Optional[bool] = None
    updated_after: Optional[datetime] = None
    created_after: Optional[datetime] = None
    created_before: Optional[datetime] = None

    def is_empty(self) -> bool:
        return all(value is None for value in asdict(self).values())


@dataclass
class ParsedQuery:
    """Residual free text plus the filters extracted from it."""
    search_text: str = ""
    filters: SearchFilters = field(default_factory=SearchFilters)


@dataclass
class SearchResult:
    """Projection of a stored document with its ranking score."""
    id: int
    source_type: SearchSource
    source_id: str
    external_id: int
    title: str
    status: str
    url: str
    created_at: datetime
    updated_at: datetime
    score: float
    description: Optional[str] = None
    priority: Optional[int] = None
    item_type: Optional[str] = None
    author_name: Optional[str] = None

    @classmethod
    def from_document(cls, document: SearchDocument, score: float) -> "SearchResult":
        return cls(
            id=document.id if document.id is not None else 0,
            source_type=document.source_type,
            source_id=document.source_id,
            external_id=document.external_id,
            title=document.title,
            status=document.status,
            url=document.url,
            created_at=document.created_at,
            updated_at=document.updated_at,
            score=score,
            description=document.description,
            priority=document.priority,
            item_type=document.item_type,
            author_name=document.author_name,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        data = asdict(self)
        data["source_type"] = self.source_type.value
        data["created_at"] = self.created_at.isoformat()
        data["updated_at"] = self.updated_at.isoformat()
        return data


@dataclass
class IndexStats:
    """Document counts reported by ``SearchService.stats``."""
    total: int = 0
    prs: int = 0
    work_items: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class SyncStats:
    """Outcome of one ``sync_project`` run (or an aggregate of several)."""
    prs_indexed: int = 0
    work_items_indexed: int = 0
    documents_deleted: int = 0
    errors: int = 0

    @property
    def total_indexed(self) -> int:
        return self.prs_indexed + self.work_items_indexed

    def add(self, other: "SyncStats") -> None:
        """Accumulate another run's counters into this one."""
        self.prs_indexed += other.prs_indexed
        self.work_items_indexed += other.work_items_indexed
        self.documents_deleted += other.documents_deleted
        self.errors += other.errors


@dataclass
class PullRequestDocument:
    """Pull request as delivered by a ``DocumentSource``.

    ``additional_content`` holds comments, commit messages and similar text
    that should be searchable but is not part of the description.
    """
    id: int
    title: str
    project: str
    repo_name: str
    status: str
    created_at: datetime
    updated_at: datetime
    url: str
    description: Optional[str] = None
    author_id: Optional[str] = None
    author_name: Optional[str] = None
    is_draft: bool = False
    closed_at: Optional[datetime] = None
    additional_content: str = ""
    linked_work_items: List[int] = field(default_factory=list)


@dataclass
class WorkItemDocument:
    """Work item as delivered by a ``DocumentSource``."""
    id: int
    title: str
    project: str
    status: str
    item_type: str
    created_at: datetime
    updated_at: datetime
    url: str
    description: Optional[str] = None
    author_id: Optional[str] = None
    author_name: Optional[str] = None
    assigned_to_id: Optional[str] = None
    assigned_to_name: Optional[str] = None
    priority: Optional[int] = None
    closed_at: Optional[datetime] = None
    parent_id: Optional[int] = None
    additional_content: str = ""
