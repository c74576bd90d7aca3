# Models package: re-export the public models.
# Prefer importing from the specific submodule (e.g. trackingtracker.models.tracking).

from trackingtracker.models.requests import (
    CookieSetReport as CookieSetReport,
    GateAction as GateAction,
    GateVerdict as GateVerdict,
    HistoryRemoval as HistoryRemoval,
    HostCookie as HostCookie,
    InterceptedRequest as InterceptedRequest,
    WindowType as WindowType,
)
from trackingtracker.models.tracking import (
    AnalyticsCandidate as AnalyticsCandidate,
    Category as Category,
    Subscriber as Subscriber,
    TrackerRecord as TrackerRecord,
    TrackerSummary as TrackerSummary,
    TrackingNotification as TrackingNotification,
)
