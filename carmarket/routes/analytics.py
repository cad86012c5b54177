from typing import Optional

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..auth.security import get_optional_user, require_admin
from ..models.models import Profile
from ..schemas.analytics import EventIn, PageViewIn
from ..services import analytics as svc


router = APIRouter(prefix="/analytics", tags=["analytics"])
admin_router = APIRouter(prefix="/admin/analytics", tags=["admin"])


def _session_id(request: Request, response: Response) -> str:
    """Reuse the visitor's session cookie or start a new 30-day one."""
    sid = request.cookies.get(svc.SESSION_COOKIE)
    if not sid or len(sid) > 64:
        sid = svc.new_session_id()
        response.set_cookie(
            svc.SESSION_COOKIE,
            sid,
            max_age=settings.session_cookie_days * 24 * 60 * 60,
            path="/",
            samesite="lax",
        )
    return sid


@router.post("/events")
def track_event(
    payload: EventIn,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    me: Optional[Profile] = Depends(get_optional_user),
):
    sid = _session_id(request, response)
    language = svc.resolve_language(payload.language, request.headers.get("accept-language"))
    event = svc.record_event(
        db,
        payload.event,
        payload.data,
        session_id=sid,
        user_id=me.id if me else None,
        user_agent=request.headers.get("user-agent"),
        language=language,
        page_url=payload.page_url,
    )
    return {
        "id": event.id,
        "session_id": sid,
        "device_type": event.device_type,
        "language": event.language,
        "is_conversion": event.is_conversion,
    }


@router.post("/page-view")
def track_page_view(
    payload: PageViewIn,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    me: Optional[Profile] = Depends(get_optional_user),
):
    sid = _session_id(request, response)
    count = svc.record_page_view(
        db,
        payload.country_code,
        payload.page_type,
        session_id=sid,
        user_id=me.id if me else None,
        entity_id=payload.entity_id,
        user_agent=request.headers.get("user-agent"),
    )
    return {"success": True, "sessionId": sid, "viewCount": count}


# Admin -----------------------------------------------------------------------

@admin_router.get("/pages")
def page_stats(country_code: Optional[str] = None, db: Session = Depends(get_db), _: Profile = Depends(require_admin)):
    return svc.page_stats(db, country_code)


@admin_router.get("/entities/{page_type}/{entity_id}")
def entity_stats(page_type: str, entity_id: str, db: Session = Depends(get_db), _: Profile = Depends(require_admin)):
    return svc.entity_stats(db, page_type, entity_id)


@admin_router.get("/events")
def event_distribution(days: Optional[int] = None, db: Session = Depends(get_db), _: Profile = Depends(require_admin)):
    return svc.event_distribution(db, days)


@admin_router.get("/events/timeline")
def events_over_time(days: int = 30, db: Session = Depends(get_db), _: Profile = Depends(require_admin)):
    return svc.events_over_time(db, min(max(1, days), 365))


@admin_router.get("/conversions")
def conversions(db: Session = Depends(get_db), _: Profile = Depends(require_admin)):
    return svc.conversion_summary(db)


@admin_router.get("/top-cars")
def top_cars(limit: int = 10, db: Session = Depends(get_db), _: Profile = Depends(require_admin)):
    return svc.top_cars(db, min(max(1, limit), 100))
