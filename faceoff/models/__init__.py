from .team import Team as Team
from .donation_record import DonationRecord as DonationRecord, DonationSource as DonationSource
from .processed_notification import ProcessedNotification as ProcessedNotification
from .webhook_event import WebhookEvent as WebhookEvent, ReconciliationOutcome as ReconciliationOutcome

__all__ = ["Team", "DonationRecord", "DonationSource", "ProcessedNotification",
           "WebhookEvent", "ReconciliationOutcome"]
