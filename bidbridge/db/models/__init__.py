from bidbridge.db.models.conversation import Conversation, Message
from bidbridge.db.models.notification import Notification
from bidbridge.db.models.project import Project
from bidbridge.db.models.quote import Quote
from bidbridge.db.models.user import User

__all__ = [
    "Conversation",
    "Message",
    "Notification",
    "Project",
    "Quote",
    "User",
]
