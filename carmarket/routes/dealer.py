from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import require_roles
from ..models.models import Profile, Car
from ..services.dealerships import get_approved_dealership_for_user, dealership_to_dict
from ..services.errors import NotFound, ValidationFailed
from ..services.listings import car_to_dict, dashboard_stats, MY_LISTING_FILTERS


router = APIRouter(prefix="/dealer", tags=["dealer"])


@router.get("/dashboard")
def dashboard(
    status: str = Query(default="all"),
    db: Session = Depends(get_db),
    me: Profile = Depends(require_roles("dealer")),
):
    """Only an approved dealership gets a dashboard."""
    if status not in MY_LISTING_FILTERS:
        raise ValidationFailed("Invalid status filter")
    d = get_approved_dealership_for_user(db, me.id)
    if d is None:
        raise NotFound("No approved dealership")
    query = db.query(Car).filter(Car.dealership_id == d.id)
    wanted: Optional[str] = MY_LISTING_FILTERS[status]
    if wanted:
        query = query.filter(Car.status == wanted)
    cars = query.order_by(Car.created_at.desc(), Car.id.desc()).all()
    return {
        "dealership": dealership_to_dict(d),
        "stats": dashboard_stats(db, d.id),
        "cars": [car_to_dict(c) for c in cars],
    }
