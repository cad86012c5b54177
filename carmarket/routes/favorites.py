from fastapi import APIRouter, Depends
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import get_current_user
from ..models.models import Profile, Favorite, Car
from ..services.listings import get_visible_car, visible_cars_query, car_to_dict


router = APIRouter(prefix="/favorites", tags=["favorites"])


@router.get("")
def list_favorites(db: Session = Depends(get_db), me: Profile = Depends(get_current_user)):
    cars = (
        visible_cars_query(db)
        .join(Favorite, Favorite.car_id == Car.id)
        .filter(Favorite.user_id == me.id)
        .order_by(Favorite.created_at.desc(), Favorite.id.desc())
        .all()
    )
    return [car_to_dict(c) for c in cars]


@router.get("/ids")
def favorite_ids(db: Session = Depends(get_db), me: Profile = Depends(get_current_user)):
    rows = db.query(Favorite.car_id).filter(Favorite.user_id == me.id).all()
    return [r[0] for r in rows]


@router.post("/{car_id}")
def add_favorite(car_id: int, db: Session = Depends(get_db), me: Profile = Depends(get_current_user)):
    car = get_visible_car(db, car_id)
    exists = db.query(Favorite.id).filter(Favorite.user_id == me.id, Favorite.car_id == car.id).first()
    if not exists:
        db.add(Favorite(user_id=me.id, car_id=car.id))
        try:
            db.commit()
        except IntegrityError:
            # Concurrent add of the same favorite
            db.rollback()
    return {"car_id": car.id, "favorited": True}


@router.delete("/{car_id}")
def remove_favorite(car_id: int, db: Session = Depends(get_db), me: Profile = Depends(get_current_user)):
    db.query(Favorite).filter(Favorite.user_id == me.id, Favorite.car_id == car_id).delete(synchronize_session=False)
    db.commit()
    return {"car_id": car_id, "favorited": False}
