from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
import structlog

from ..db import get_db
from ..auth.security import get_current_user
from ..models.models import Profile, CarReport
from ..schemas.cars import ReportCreate
from ..services.listings import get_visible_car


router = APIRouter(tags=["reports"])
log = structlog.get_logger(__name__)


def report_to_dict(r: CarReport) -> dict:
    return {
        "id": r.id,
        "car_id": r.car_id,
        "user_id": str(r.user_id),
        "reason": r.reason,
        "description": r.description,
        "status": r.status,
        "country_code": r.country_code,
        "created_at": r.created_at.isoformat() if r.created_at else None,
        "updated_at": r.updated_at.isoformat() if r.updated_at else None,
    }


@router.post("/cars/{car_id}/reports")
def report_car(car_id: int, payload: ReportCreate, db: Session = Depends(get_db), me: Profile = Depends(get_current_user)):
    car = get_visible_car(db, car_id)
    report = CarReport(
        car_id=car.id,
        user_id=me.id,
        reason=payload.reason,
        description=payload.description,
        country_code=payload.country_code,
        status="pending",
    )
    db.add(report)
    db.commit()
    db.refresh(report)
    log.info("car_reported", car_id=car.id, report_id=report.id)
    return report_to_dict(report)
