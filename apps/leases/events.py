"""Lease event types and their payloads."""

import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Optional

from apps.core.events import EventBus

LEASE_ACTIVATED = "lease.activated"
LEASE_RENEWED = "lease.renewed"
LEASE_TERMINATED = "lease.terminated"
LEASE_CANCELLED = "lease.cancelled"
LEASE_ESIGNATURE_SENT = "lease.esignature_sent"
LEASE_ESIGNATURE_FAILED = "lease.esignature_failed"
UPLOAD_COMPLETED = "upload.completed"
UPLOAD_FAILED = "upload.failed"


@dataclass(frozen=True)
class LeaseActivated:
    lease_id: Any
    luid: str
    client_id: Any
    actor_id: Optional[Any]
    via: str = "manual"


@dataclass(frozen=True)
class LeaseRenewed:
    renewal_id: Any
    renewal_luid: str
    original_id: Any
    client_id: Any
    approval_status: str
    actor_id: Optional[Any]


@dataclass(frozen=True)
class LeaseTerminated:
    lease_id: Any
    luid: str
    client_id: Any
    termination_date: date
    reason: str
    actor_id: Optional[Any]


@dataclass(frozen=True)
class LeaseCancelled:
    lease_id: Any
    luid: str
    client_id: Any
    actor_id: Optional[Any]


@dataclass(frozen=True)
class ESignatureSent:
    lease_id: Any
    luid: str
    envelope_id: str
    provider: str


@dataclass(frozen=True)
class ESignatureFailed:
    lease_id: Any
    luid: str
    error: str


@dataclass(frozen=True)
class DocumentJobContext:
    """
    Travels with a document generation job from the request to its completion
    event, so the completion handler knows what to do next without any shared
    state keyed by lease id.
    """

    lease_id: Any
    template_type: str
    sender_info: Dict[str, str] = field(default_factory=dict)
    send_for_signature: bool = False
    promote_renewal: bool = False
    requested_by_id: Optional[Any] = None
    job_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self):
        return {
            "lease_id": str(self.lease_id),
            "template_type": self.template_type,
            "sender_info": dict(self.sender_info),
            "send_for_signature": self.send_for_signature,
            "promote_renewal": self.promote_renewal,
            "requested_by_id": str(self.requested_by_id) if self.requested_by_id else None,
            "job_id": self.job_id,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            lease_id=data["lease_id"],
            template_type=data["template_type"],
            sender_info=data.get("sender_info") or {},
            send_for_signature=bool(data.get("send_for_signature")),
            promote_renewal=bool(data.get("promote_renewal")),
            requested_by_id=data.get("requested_by_id"),
            job_id=data["job_id"],
        )


@dataclass(frozen=True)
class UploadCompleted:
    context: DocumentJobContext
    document_id: Any
    file_key: str


@dataclass(frozen=True)
class UploadFailed:
    context: DocumentJobContext
    error: str


lease_events = EventBus(
    "leases",
    {
        LEASE_ACTIVATED: LeaseActivated,
        LEASE_RENEWED: LeaseRenewed,
        LEASE_TERMINATED: LeaseTerminated,
        LEASE_CANCELLED: LeaseCancelled,
        LEASE_ESIGNATURE_SENT: ESignatureSent,
        LEASE_ESIGNATURE_FAILED: ESignatureFailed,
        UPLOAD_COMPLETED: UploadCompleted,
        UPLOAD_FAILED: UploadFailed,
    },
)
