"""ORM models; importing this package registers every table on Base.metadata."""
from campus_events.models.event import Event, EventStatus  # noqa: F401
from campus_events.models.event_transition import EventTransition  # noqa: F401
from campus_events.models.registration import Registration, RegistrationStatus  # noqa: F401
from campus_events.models.credential import Credential  # noqa: F401
from campus_events.models.notification import Notification  # noqa: F401
