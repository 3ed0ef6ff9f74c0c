"""
Notification Feed

Keeps a live list of the account's notifications and the unread count.
Read-marking and clearing are fire-and-forget: failures are logged and the
feed carries on.
"""
import logging
from typing import Callable, List, Optional

from pydantic import ValidationError
from pymongo.errors import PyMongoError

from database import newest_first, serialize, to_object_id
from schemas import AccountContext, Notification
from subscriptions import ChangeSubscription

logger = logging.getLogger(__name__)

NOTIFICATIONS = "notifications"


def _doc_id(notification_id: str):
    return to_object_id(notification_id) or notification_id


class NotificationFeed:
    def __init__(self, db, account: AccountContext):
        self.collection = db[NOTIFICATIONS]
        self.account = account
        self.notifications: List[Notification] = []
        self._subscription: Optional[ChangeSubscription] = None

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self.notifications if not n.read)

    def _load(self) -> List[Notification]:
        docs = self.collection.find({"user_id": self.account.uid})
        notifications = []
        for doc in newest_first(docs):
            try:
                notifications.append(Notification(**serialize(doc)))
            except ValidationError as e:
                logger.warning(f"Skipping malformed notification {doc.get('_id')}: {e}")
        return notifications

    def refresh(self) -> List[Notification]:
        try:
            self.notifications = self._load()
        except PyMongoError as e:
            logger.error(f"Error fetching notifications: {e}")
        return list(self.notifications)

    def subscribe(
        self,
        on_change: Callable[[List[Notification], int], None],
        on_error: Optional[Callable[[Exception], None]] = None,
    ) -> ChangeSubscription:
        self.unsubscribe()

        def deliver(items: List[Notification]) -> None:
            self.notifications = items
            on_change(list(items), self.unread_count)

        # deletes carry no document body, so they always trigger a reload
        pipeline = [{"$match": {"$or": [
            {"fullDocument.user_id": self.account.uid},
            {"operationType": "delete"},
        ]}}]
        self._subscription = ChangeSubscription(
            self.collection,
            load_snapshot=self._load,
            on_change=deliver,
            on_error=on_error,
            pipeline=pipeline,
        ).start()
        return self._subscription

    def unsubscribe(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
            self.notifications = []

    def mark_read(self, notification_id: str) -> None:
        try:
            self.collection.update_one(
                {"_id": _doc_id(notification_id), "user_id": self.account.uid},
                {"$set": {"read": True}},
            )
        except PyMongoError as e:
            logger.error(f"Error marking notification as read: {e}")

    def mark_all_read(self) -> None:
        unread = [_doc_id(n.id) for n in self.notifications if not n.read]
        if not unread:
            return
        try:
            self.collection.update_many(
                {"_id": {"$in": unread}, "user_id": self.account.uid},
                {"$set": {"read": True}},
            )
        except PyMongoError as e:
            logger.error(f"Error marking all as read: {e}")

    def clear_all(self) -> None:
        owned = [_doc_id(n.id) for n in self.notifications if n.user_id == self.account.uid]
        if not owned:
            return
        try:
            self.collection.delete_many({"_id": {"$in": owned}, "user_id": self.account.uid})
        except PyMongoError as e:
            logger.error(f"Error clearing notifications: {e}")
