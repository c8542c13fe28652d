from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from commissary.db import get_db
from commissary.services.location_service import list_locations

router = APIRouter(prefix='/locations', tags=['locations'])


@router.get('')
def get_locations(include_inactive: bool = False, db: Session = Depends(get_db)):
    locations = list_locations(db, active_only=not include_inactive)
    return {
        'locations': [
            {
                'code': location.code,
                'name': location.name,
                'location_type': location.location_type.value,
                'active': location.active,
            }
            for location in locations
        ]
    }
