"""
預設房間：資料庫沒有任何房間時，啟動時建立
"""
import logging

from sqlalchemy.orm import Session

from models import Room, RoomStatus, new_id
from database import transactional

logger = logging.getLogger(__name__)

DEFAULT_ROOMS = [
    "Hot Room 1",
    "Hot Room 2",
    "Hot Room 3",
    "Massage 1",
    "Massage 2",
    "Scrub 1",
]


@transactional
def seed_default_rooms(db: Session) -> int:
    """
    建立預設房間（冪等：已經有房間就什麼都不做）

    返回：
        新建立的房間數量
    """
    if db.query(Room).first():
        return 0

    for name in DEFAULT_ROOMS:
        db.add(Room(id=new_id(), name=name, status=RoomStatus.AVAILABLE))

    logger.info(f"Seeded {len(DEFAULT_ROOMS)} default rooms")
    return len(DEFAULT_ROOMS)
