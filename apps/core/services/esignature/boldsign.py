import hashlib
import hmac
import json
import logging

import requests

from .base import ESignatureError, ESignatureGateway, SendResult, WebhookEvent

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "HTTP_X_BOLDSIGN_SIGNATURE"


class BoldSignGateway(ESignatureGateway):
    provider = "boldsign"

    def __init__(self, config):
        super().__init__(config)
        self.api_url = config.get("api_url", "https://api.boldsign.com").rstrip("/")
        self.timeout = config.get("timeout", 30)
        self.session = requests.Session()
        self.session.headers.update({"X-API-KEY": config.get("api_key", "")})

    def send_for_signature(self, title, pdf_bytes, file_name, signers, sender, message=""):
        data = {
            "Title": title,
            "Message": message or "Please review and sign this document.",
            "ExpiryDays": self.config.get("expiry_days", 30),
            "EnableSigningOrder": "false",
            "ReminderSettings.ReminderDays": 5,
            "ReminderSettings.ReminderCount": 3,
        }
        if sender and sender.email:
            data["OnBehalfOf"] = sender.email
        for i, signer in enumerate(signers):
            data[f"Signers[{i}][Name]"] = signer.name
            data[f"Signers[{i}][EmailAddress]"] = signer.email
            data[f"Signers[{i}][SignerType]"] = "Signer"

        logger.info("Sending document '%s' to BoldSign for %d signer(s)", title, len(signers))
        try:
            resp = self.session.post(
                f"{self.api_url}/v1/document/send",
                data=data,
                files={"Files": (file_name, pdf_bytes, "application/pdf")},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            body = resp.json()
        except (requests.RequestException, ValueError) as e:
            logger.exception("BoldSign send failed for '%s'", title)
            raise ESignatureError(f"BoldSign API error: {e}") from e

        envelope_id = body.get("documentId", "")
        if not envelope_id:
            raise ESignatureError("BoldSign response did not include a document id")
        logger.info("BoldSign document %s created for '%s'", envelope_id, title)
        return SendResult(envelope_id=envelope_id, raw_response=body)

    def revoke_document(self, envelope_id, reason):
        if not envelope_id:
            raise ESignatureError("No envelope id to revoke")
        try:
            resp = self.session.post(
                f"{self.api_url}/v1/document/revoke",
                params={"documentId": envelope_id},
                json={"message": reason},
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.exception("BoldSign revoke failed for %s", envelope_id)
            raise ESignatureError(f"BoldSign API error: {e}") from e
        logger.info("BoldSign document %s revoked: %s", envelope_id, reason)

    def verify_webhook(self, request):
        secret = self.config.get("webhook_secret", "")
        if not secret:
            raise ValueError("Webhook secret not configured")

        signature = request.META.get(SIGNATURE_HEADER, "")
        expected = hmac.new(secret.encode(), request.body, hashlib.sha256).hexdigest()
        if not signature or not hmac.compare_digest(expected, signature):
            raise ValueError("BoldSign webhook signature mismatch")

        try:
            body = json.loads(request.body)
        except ValueError as e:
            raise ValueError(f"Malformed webhook payload: {e}") from e

        event_type = (body.get("event") or {}).get("eventType", "")
        if event_type == "Verification":
            return None

        data = body.get("data") or {}
        envelope_id = data.get("documentId", "")
        if not event_type or not envelope_id:
            raise ValueError("Missing required fields: event.eventType, data.documentId")

        finished = _finished_signers(data)
        signer = max(finished, key=lambda s: s.get("lastActivityDate") or "") if finished else None
        return WebhookEvent(
            event_type=event_type,
            envelope_id=envelope_id,
            data=data,
            signer_email=signer.get("signerEmail") if signer else None,
            signed_at=signer.get("lastActivityDate") if signer else None,
            signers=[(s.get("signerEmail"), s.get("lastActivityDate")) for s in finished],
        )


def _finished_signers(data):
    return [
        s for s in data.get("signerDetails") or [] if s.get("status") in ("Completed", "Signed")
    ]
