"""
Analytics events and page-view counters.

Events are stored locally and, when enabled, forwarded once to the Google
Analytics Measurement Protocol. A failed forward is logged and dropped.
"""
import re
import uuid
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, List

import httpx
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
import structlog

from ..config import settings
from ..models.models import AnalyticsEvent, PageView, UserPageView, Car, Brand, CarModel
from .errors import ValidationFailed


log = structlog.get_logger(__name__)

SESSION_COOKIE = "view_session_id"

EVENT_NAMES = (
    "page_view",
    "scroll_depth",
    "time_on_page",
    "car_view",
    "car_search",
    "car_filter",
    "car_favorite",
    "car_share",
    "contact_seller",
    "whatsapp_click",
    "phone_click",
    "email_click",
    "user_signup",
    "user_login",
    "user_logout",
    "profile_update",
    "search_performed",
    "filter_used",
    "navigation_click",
    "form_start",
    "form_complete",
    "form_error",
    "car_listing_created",
)

# Conversion events carry a fixed value per occurrence
CONVERSIONS: Dict[str, Dict[str, Any]] = {
    "contact_seller": {"conversion_type": "lead", "value": 10, "currency": "QAR"},
    "user_signup": {"conversion_type": "signup", "value": 5, "currency": "QAR"},
    "car_listing_created": {"conversion_type": "listing", "value": 15, "currency": "QAR"},
}

_BOT_RE = re.compile(r"bot|crawl|spider|slurp|bingpreview|facebookexternalhit|headless|lighthouse", re.I)
_TABLET_RE = re.compile(r"ipad|tablet|kindle|silk|playbook|(android(?!.*mobile))", re.I)
_MOBILE_RE = re.compile(r"mobi|iphone|ipod|android.*mobile|blackberry|iemobile|opera mini|windows phone", re.I)
_LANG_RE = re.compile(r"^[A-Za-z]{2,3}")


def classify_device(user_agent: Optional[str]) -> str:
    """mobile|tablet|desktop|bot from a User-Agent header."""
    ua = user_agent or ""
    if _BOT_RE.search(ua):
        return "bot"
    if _TABLET_RE.search(ua):
        return "tablet"
    if _MOBILE_RE.search(ua):
        return "mobile"
    return "desktop"


def resolve_language(explicit: Optional[str], accept_language: Optional[str]) -> Optional[str]:
    """Explicit UI language wins; otherwise the first Accept-Language tag."""
    for candidate in (explicit, (accept_language or "").split(",")[0].split(";")[0].strip()):
        if candidate:
            m = _LANG_RE.match(candidate.strip())
            if m:
                return m.group(0).lower()
    return None


def new_session_id() -> str:
    return str(uuid.uuid4())


def build_event_params(event_name: str, data: Optional[Dict[str, Any]], context: Dict[str, Any]) -> Dict[str, Any]:
    params = dict(data or {})
    params.update({k: v for k, v in context.items() if v is not None})
    conversion = CONVERSIONS.get(event_name)
    if conversion:
        params["conversion"] = True
        params.update(conversion)
    return params


class MeasurementProtocolClient:
    """Sends events to the GA4 Measurement Protocol endpoint."""

    def __init__(
        self,
        measurement_id: Optional[str] = None,
        api_secret: Optional[str] = None,
        endpoint: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.measurement_id = measurement_id or settings.ga_measurement_id
        self.api_secret = api_secret or settings.ga_api_secret
        self.endpoint = endpoint or settings.ga_endpoint
        self.timeout = timeout or settings.analytics_timeout_s
        self.transport = transport

    def send(self, client_id: str, name: str, params: Dict[str, Any], user_id: Optional[str] = None) -> bool:
        """Single attempt; returns False instead of raising when the tag endpoint fails."""
        if not self.api_secret:
            return False
        body: Dict[str, Any] = {"client_id": client_id, "events": [{"name": name, "params": params}]}
        if user_id:
            body["user_id"] = user_id
        query = {"measurement_id": self.measurement_id, "api_secret": self.api_secret}
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(self.endpoint, params=query, json=body)
                response.raise_for_status()
        except httpx.HTTPError as e:
            log.warning("analytics_forward_failed", event_name=name, error=str(e))
            return False
        return True


def record_event(
    db: Session,
    event_type: str,
    event_data: Optional[Dict[str, Any]],
    session_id: str,
    user_id=None,
    user_agent: Optional[str] = None,
    language: Optional[str] = None,
    page_url: Optional[str] = None,
    client: Optional[MeasurementProtocolClient] = None,
) -> AnalyticsEvent:
    if event_type not in EVENT_NAMES:
        raise ValidationFailed(f"Unknown analytics event {event_type}")
    device = classify_device(user_agent)
    params = build_event_params(
        event_type,
        event_data,
        {"device_type": device, "user_language": language, "page_location": page_url, "session_id": session_id},
    )
    event = AnalyticsEvent(
        event_type=event_type,
        event_data=params,
        user_id=user_id,
        session_id=session_id,
        device_type=device,
        language=language,
        page_url=page_url,
        user_agent=(user_agent or "")[:512] or None,
        is_conversion=event_type in CONVERSIONS,
    )
    db.add(event)
    db.commit()
    db.refresh(event)

    if client is None and settings.analytics_forward:
        client = MeasurementProtocolClient()
    if client is not None:
        client.send(session_id, event_type, params, user_id=str(user_id) if user_id else None)
    return event


def record_page_view(
    db: Session,
    country_code: str,
    page_type: str,
    session_id: str,
    user_id=None,
    entity_id: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> int:
    """
    Bump the (country, page type) counter and store the detailed view.
    Returns how many times this session has viewed this page type.
    """
    country_code = country_code.lower()
    now = datetime.utcnow()
    counter = (
        db.query(PageView)
        .filter(PageView.country_code == country_code, PageView.page_type == page_type)
        .first()
    )
    if counter is None:
        db.add(PageView(country_code=country_code, page_type=page_type, view_count=1, last_viewed_at=now))
        try:
            db.commit()
        except IntegrityError:
            # Another request created the counter first
            db.rollback()
            counter = (
                db.query(PageView)
                .filter(PageView.country_code == country_code, PageView.page_type == page_type)
                .one()
            )
    if counter is not None:
        db.query(PageView).filter(PageView.id == counter.id).update(
            {PageView.view_count: PageView.view_count + 1, PageView.last_viewed_at: now},
            synchronize_session=False,
        )

    db.add(
        UserPageView(
            user_id=user_id,
            session_id=session_id,
            country_code=country_code,
            page_type=page_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            page_path=f"/{page_type}/{entity_id}" if entity_id is not None else f"/{page_type}",
            user_agent=(user_agent or "")[:512] or None,
            is_authenticated=user_id is not None,
        )
    )
    db.commit()
    return (
        db.query(func.count(UserPageView.id))
        .filter(UserPageView.session_id == session_id, UserPageView.page_type == page_type)
        .scalar()
        or 0
    )


# Admin reporting ------------------------------------------------------------

def page_stats(db: Session, country_code: Optional[str] = None) -> List[Dict[str, Any]]:
    query = db.query(PageView)
    if country_code:
        query = query.filter(PageView.country_code == country_code.lower())
    rows = query.order_by(PageView.view_count.desc(), PageView.id.asc()).all()
    return [
        {
            "country_code": r.country_code,
            "page_type": r.page_type,
            "view_count": r.view_count,
            "last_viewed_at": r.last_viewed_at.isoformat() if r.last_viewed_at else None,
        }
        for r in rows
    ]


def entity_stats(db: Session, page_type: str, entity_id: str) -> Dict[str, Any]:
    total, unique_sessions, last = (
        db.query(
            func.count(UserPageView.id),
            func.count(func.distinct(UserPageView.session_id)),
            func.max(UserPageView.created_at),
        )
        .filter(UserPageView.page_type == page_type, UserPageView.entity_id == str(entity_id))
        .one()
    )
    return {
        "page_type": page_type,
        "entity_id": str(entity_id),
        "total_views": int(total or 0),
        "unique_viewers": int(unique_sessions or 0),
        "last_viewed_at": last.isoformat() if last else None,
    }


def event_distribution(db: Session, days: Optional[int] = None) -> List[Dict[str, Any]]:
    query = db.query(AnalyticsEvent.event_type, func.count(AnalyticsEvent.id))
    if days:
        query = query.filter(AnalyticsEvent.created_at >= datetime.utcnow() - timedelta(days=days))
    rows = query.group_by(AnalyticsEvent.event_type).order_by(func.count(AnalyticsEvent.id).desc()).all()
    return [{"event_type": name, "count": int(n)} for name, n in rows]


def events_over_time(db: Session, days: int = 30) -> List[Dict[str, Any]]:
    day = func.date(AnalyticsEvent.created_at)
    rows = (
        db.query(day, func.count(AnalyticsEvent.id))
        .filter(AnalyticsEvent.created_at >= datetime.utcnow() - timedelta(days=days))
        .group_by(day)
        .order_by(day)
        .all()
    )
    return [{"date": str(d), "count": int(n)} for d, n in rows]


def conversion_summary(db: Session) -> Dict[str, Any]:
    rows = (
        db.query(AnalyticsEvent.event_type, func.count(AnalyticsEvent.id))
        .filter(AnalyticsEvent.is_conversion.is_(True))
        .group_by(AnalyticsEvent.event_type)
        .all()
    )
    by_event = {name: int(n) for name, n in rows}
    value = sum(CONVERSIONS[name]["value"] * n for name, n in by_event.items() if name in CONVERSIONS)
    return {"by_event": by_event, "total_value": value, "currency": settings.default_currency}


def top_cars(db: Session, limit: int = 10) -> List[Dict[str, Any]]:
    rows = (
        db.query(Car, Brand.name, CarModel.name)
        .join(Brand, Brand.id == Car.brand_id)
        .join(CarModel, CarModel.id == Car.model_id)
        .order_by(Car.views.desc(), Car.id.asc())
        .limit(limit)
        .all()
    )
    return [
        {
            "id": car.id,
            "brand": brand,
            "model": model,
            "year": car.year,
            "status": car.status,
            "views": car.views or 0,
        }
        for car, brand, model in rows
    ]
