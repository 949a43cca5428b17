import logging
from typing import Optional
import stripe
from pydantic import ValidationError
from faceoff.core.config import settings
from faceoff.core.exceptions import MisconfigurationError, VerificationError
from faceoff.schemas.notification import VerifiedEvent

logger = logging.getLogger(__name__)


class NotificationVerifier:
    """
    Checks that a notification was signed by Stripe with our endpoint secret
    and is recent enough, then parses it. Has no side effects.
    """

    def __init__(self, tolerance_seconds: Optional[int] = None):
        self.tolerance_seconds = tolerance_seconds

    def verify(self, raw_body: bytes, signature_header: Optional[str], shared_secret: Optional[str]) -> VerifiedEvent:
        if not shared_secret:
            logger.error("STRIPE_WEBHOOK_SECRET is not configured; refusing all notifications")
            raise MisconfigurationError("Webhook secret is not configured")
        if not signature_header:
            raise VerificationError("Missing Stripe-Signature header")
        try:
            # the signature covers the exact bytes received, so nothing is parsed before this
            payload = raw_body.decode("utf-8")
        except UnicodeDecodeError:
            raise VerificationError("Payload is not valid UTF-8")
        tolerance = self.tolerance_seconds
        if tolerance is None:
            tolerance = settings.STRIPE_SIGNATURE_TOLERANCE_SECONDS
        try:
            stripe.WebhookSignature.verify_header(payload, signature_header, shared_secret, tolerance)
        except stripe.SignatureVerificationError as e:
            logger.info("Rejected notification: %s", e)
            raise VerificationError()
        try:
            return VerifiedEvent.model_validate_json(payload)
        except ValidationError:
            raise VerificationError("Payload is not a valid event")


notification_verifier = NotificationVerifier()
