"""SQLAlchemy models for the TaskMaster billing core.

All models are imported here so that ``Base.metadata`` knows every table
(``create_all`` in tests and the seed script rely on it). If you add a new
model, import it in this file.
"""

from taskmaster.models.notification import Notification
from taskmaster.models.payment import Payment
from taskmaster.models.plan import Plan
from taskmaster.models.profile import Profile
from taskmaster.models.subscription import Subscription

__all__ = [
    "Notification",
    "Payment",
    "Plan",
    "Profile",
    "Subscription",
]
