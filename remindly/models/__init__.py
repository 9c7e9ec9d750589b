from remindly.models.loans import EMIPayment, Loan
from remindly.models.notifications import NotificationLog, PushSubscription
from remindly.models.reminders import Reminder
from remindly.models.users import User

__all__ = [
    "EMIPayment",
    "Loan",
    "NotificationLog",
    "PushSubscription",
    "Reminder",
    "User",
]
