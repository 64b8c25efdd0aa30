from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional


class ESignatureError(Exception):
    """Raised by a gateway when the provider rejects or fails a request."""


@dataclass
class Signer:
    name: str
    email: str
    role: str
    user_id: Optional[str] = None


@dataclass
class SenderInfo:
    name: str
    email: str

    def as_dict(self):
        return {"name": self.name, "email": self.email}


@dataclass
class SendResult:
    envelope_id: str
    raw_response: dict = field(default_factory=dict)


@dataclass
class WebhookEvent:
    event_type: str
    envelope_id: str
    data: dict = field(default_factory=dict)
    signer_email: Optional[str] = None
    signed_at: Optional[str] = None
    # (email, signed_at) of every signer who has finished
    signers: List[tuple] = field(default_factory=list)


class ESignatureGateway(ABC):
    provider = ""

    def __init__(self, config):
        self.config = config

    @abstractmethod
    def send_for_signature(
        self, title, pdf_bytes, file_name, signers: List[Signer], sender: SenderInfo, message=""
    ) -> SendResult:
        ...

    @abstractmethod
    def revoke_document(self, envelope_id, reason) -> None:
        ...

    @abstractmethod
    def verify_webhook(self, request) -> Optional[WebhookEvent]:
        """Verify the webhook signature and extract the event.

        Returns None for provider handshake events that carry no document.
        Raises ValueError if the signature is invalid or the payload malformed.
        """
        ...
