import enum


class UserRole(str, enum.Enum):
    POSTER = "poster"
    PROVIDER = "provider"
    ADMIN = "admin"


class ProjectStatus(str, enum.Enum):
    OPEN = "open"
    ASSIGNED = "assigned"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class QuoteStatus(str, enum.Enum):
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"


class NotificationCategory(str, enum.Enum):
    JOB = "job"
    QUOTE = "quote"
    MESSAGE = "message"
    PROFILE = "profile"
    ESTIMATION = "estimation"
    SUPPORT = "support"
    COMMUNITY = "community"
    SYSTEM = "system"
