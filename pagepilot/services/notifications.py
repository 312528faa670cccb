from sqlalchemy.orm import Session

from pagepilot.models import Notification
from pagepilot.services.realtime import manager, user_room

def notify(db: Session, user_id: int, title: str, description: str | None = None, *,
           type: str = "info", priority: str = "normal", meta: dict | None = None) -> Notification:
    notification = Notification(
        user_id=user_id,
        title=title,
        description=description,
        type=type,
        priority=priority,
        meta=meta,
    )
    db.add(notification)
    db.commit()
    manager.publish(user_room(user_id), "notification", {
        "id": notification.id,
        "title": title,
        "description": description,
        "type": type,
        "priority": priority,
    })
    return notification
