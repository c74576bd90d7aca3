"""
Command/query API routes.

Every operation of the tracker service is reachable over HTTP so
external subscribers and UIs can read aggregates and change the
block policy.  Responses use camelCase keys.
"""

from __future__ import annotations

from typing import Any

import fastapi
import pydantic

from trackingtracker.models import requests as request_models
from trackingtracker.models import tracking
from trackingtracker.service import TrackerService
from trackingtracker.utils import errors, logger, serialization

log = logger.create_logger("API")

router = fastapi.APIRouter(prefix="/api")


def get_service(request: fastapi.Request) -> TrackerService:
    """Return the service owned by the running app."""
    return request.app.state.service


class SubscriberRegistration(pydantic.BaseModel):
    """Body of ``POST /api/subscribers``."""

    model_config = serialization.CAMEL_CONFIG

    id: str = pydantic.Field(min_length=1)
    name: str
    link: str | None = None


class VisitEvent(pydantic.BaseModel):
    """Body of ``POST /api/history/visits``."""

    url: str


def _category_or_400(category: str) -> tracking.Category:
    try:
        return tracking.parse_category(category)
    except errors.InvalidCategoryError as exc:
        raise fastapi.HTTPException(status_code=400, detail=str(exc)) from exc


# ============================================================================
# Tracker Views
# ============================================================================


@router.get("/trackers")
def get_trackers(service: TrackerService = fastapi.Depends(get_service)) -> dict[str, Any]:
    """Tracker domain -> ``{domain, categoryList, trackedSites}``."""
    return {key: summary.model_dump(mode="json", by_alias=True) for key, summary in service.get_trackers().items()}


@router.get("/trackers/current-tab")
def get_trackers_on_current_tab(service: TrackerService = fastapi.Depends(get_service)) -> dict[str, list[str]]:
    return service.get_trackers_on_current_tab()


@router.get("/trackers/by-site")
def get_trackers_by_site(service: TrackerService = fastapi.Depends(get_service)) -> dict[str, dict[str, list[str]]]:
    return service.get_trackers_by_site()


# ============================================================================
# Block Policy
# ============================================================================


@router.post("/domains/{domain}/block")
def block_tracker_domain(domain: str, service: TrackerService = fastapi.Depends(get_service)) -> dict[str, bool]:
    service.block_tracker_domain(domain)
    return {"blocked": service.is_tracker_domain_blocked(domain)}


@router.delete("/domains/{domain}/block")
def unblock_tracker_domain(domain: str, service: TrackerService = fastapi.Depends(get_service)) -> dict[str, bool]:
    service.unblock_tracker_domain(domain)
    return {"blocked": service.is_tracker_domain_blocked(domain)}


@router.get("/domains/{domain}/blocked")
def is_tracker_domain_blocked(domain: str, service: TrackerService = fastapi.Depends(get_service)) -> dict[str, bool]:
    return {"blocked": service.is_tracker_domain_blocked(domain)}


@router.post("/domains/{domain}/strip-cookies")
def remove_cookies_for_tracker_domain(
    domain: str, service: TrackerService = fastapi.Depends(get_service)
) -> dict[str, bool]:
    service.remove_cookies_for_tracker_domain(domain)
    return {"stripping": True}


@router.delete("/domains/{domain}/strip-cookies")
def stop_remove_cookies_for_tracker_domain(
    domain: str, service: TrackerService = fastapi.Depends(get_service)
) -> dict[str, bool]:
    service.stop_remove_cookies_for_tracker_domain(domain)
    return {"stripping": False}


@router.post("/categories/{category}/block")
def block_category(category: str, service: TrackerService = fastapi.Depends(get_service)) -> dict[str, Any]:
    parsed = _category_or_400(category)
    swept = service.block_category(parsed)
    return {"category": parsed.value, "blocked": True, "domains": swept}


@router.delete("/categories/{category}/block")
def unblock_category(category: str, service: TrackerService = fastapi.Depends(get_service)) -> dict[str, Any]:
    parsed = _category_or_400(category)
    released = service.unblock_category(parsed)
    return {"category": parsed.value, "blocked": False, "domains": released}


@router.get("/blocked/domains")
def get_blocked_domains(service: TrackerService = fastapi.Depends(get_service)) -> dict[str, bool]:
    return service.get_blocked_domains()


@router.get("/blocked/categories")
def get_blocked_categories(service: TrackerService = fastapi.Depends(get_service)) -> dict[str, bool]:
    return service.get_blocked_categories()


@router.get("/strip-cookies/domains")
def get_remove_cookie_domains(service: TrackerService = fastapi.Depends(get_service)) -> dict[str, bool]:
    return service.get_remove_cookie_domains()


# ============================================================================
# Subscribers
# ============================================================================


@router.post("/subscribers", status_code=201)
def register_subscriber(
    body: SubscriberRegistration, service: TrackerService = fastapi.Depends(get_service)
) -> dict[str, Any]:
    subscriber = service.register_subscriber(body.id, body.name, body.link)
    return subscriber.model_dump(by_alias=True, exclude_none=True)


@router.get("/subscribers")
def get_registered_subscribers(service: TrackerService = fastapi.Depends(get_service)) -> dict[str, Any]:
    return {
        sub_id: sub.model_dump(by_alias=True, exclude={"id"}, exclude_none=True)
        for sub_id, sub in service.get_registered_subscribers().items()
    }


@router.delete("/subscribers/{subscriber_id}", status_code=204)
def unregister_subscriber(subscriber_id: str, service: TrackerService = fastapi.Depends(get_service)) -> None:
    if not service.unregister_subscriber(subscriber_id):
        raise fastapi.HTTPException(status_code=404, detail=f"Subscriber {subscriber_id!r} is not registered")


# ============================================================================
# History & Data
# ============================================================================


@router.post("/history/visits", status_code=204)
def record_visit(body: VisitEvent, service: TrackerService = fastapi.Depends(get_service)) -> None:
    service.on_history_visited(body.url)


@router.post("/history/remove")
async def remove_history(
    body: request_models.HistoryRemoval, service: TrackerService = fastapi.Depends(get_service)
) -> dict[str, list[str]]:
    evicted = await service.on_history_removed(body.urls, all_history=body.all_history)
    return {"evicted": sorted(evicted)}


@router.delete("/data", status_code=204)
def clear_all_data(service: TrackerService = fastapi.Depends(get_service)) -> None:
    log.info("Clearing all data on request")
    service.clear_all_data()
