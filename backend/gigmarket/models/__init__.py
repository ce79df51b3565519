from gigmarket.models.profile import Profile
from gigmarket.models.job import Job
from gigmarket.models.proposal import Proposal
from gigmarket.models.deal import Deal
from gigmarket.models.conversation import Conversation
from gigmarket.models.message import Message
from gigmarket.models.notification import Notification
from gigmarket.models.audit_log import AuditLog

__all__ = [
    "Profile",
    "Job",
    "Proposal",
    "Deal",
    "Conversation",
    "Message",
    "Notification",
    "AuditLog",
]
