"""
Pipeline result schemas.
"""
import uuid
from typing import Optional, List, Literal
from pydantic import BaseModel


class Resolution(BaseModel):
    """Dedup decision for one candidate."""
    action: Literal["create", "merge", "reject", "duplicate"]
    target_person_id: Optional[uuid.UUID] = None
    matched_person_ids: List[uuid.UUID] = []
    reason: Optional[str] = None


class IngestionOutcome(BaseModel):
    """Result of running one candidate through the pipeline."""
    status: Literal["created", "merged", "duplicate", "staged", "rejected", "failed"]
    person_id: Optional[uuid.UUID] = None
    assigned_to: Optional[uuid.UUID] = None
    message_id: Optional[str] = None
    code: Optional[str] = None
    message: Optional[str] = None
    flagged_duplicates: int = 0


class MailboxPollResult(BaseModel):
    """Per-mailbox counts from one sweep."""
    agent_id: uuid.UUID
    mailbox_email: Optional[str] = None
    processed: int = 0
    created: int = 0
    merged: int = 0
    duplicate: int = 0
    staged: int = 0
    rejected: int = 0
    failed: int = 0
    skipped: bool = False
    error: Optional[str] = None

    def count(self, outcome: IngestionOutcome) -> None:
        """Tally an outcome into the matching counter."""
        setattr(self, outcome.status, getattr(self, outcome.status) + 1)
        if outcome.status != "failed":
            self.processed += 1


class SweepReport(BaseModel):
    """Aggregate result of a mailbox sweep."""
    total_processed: int = 0
    succeeded: int = 0
    failed: int = 0
    per_source_results: List[MailboxPollResult] = []


class TokenSweepReport(BaseModel):
    processed: int = 0
    refreshed: int = 0
    deactivated: int = 0
    failed: int = 0
