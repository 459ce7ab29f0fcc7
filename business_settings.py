"""
The single business settings document.

It lives under a fixed ``_id`` so creation is an upsert on that key: two
first reads racing each other still leave exactly one document behind.
"""

import logging
from typing import Any, Dict

from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import from_mongo, to_mongo
from schemas import Settings

logger = logging.getLogger(__name__)

COLLECTION = "settings"
SETTINGS_ID = "business"


def get_settings(db: Database) -> Dict[str, Any]:
    defaults = to_mongo(Settings().model_dump())
    try:
        doc = db[COLLECTION].find_one_and_update(
            {"_id": SETTINGS_ID},
            {"$setOnInsert": defaults},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
    except DuplicateKeyError:
        # lost the insert race; the winner's document is there now
        doc = db[COLLECTION].find_one({"_id": SETTINGS_ID})
    return from_mongo(doc)


def update_settings(db: Database, changes: Dict[str, Any]) -> Dict[str, Any]:
    changes = {k: v for k, v in changes.items() if k not in ("_id", "id")}
    if changes:
        # fill in defaults for anything not being changed on a fresh store
        defaults = {k: v for k, v in to_mongo(Settings().model_dump()).items() if k not in changes}
        update: Dict[str, Any] = {"$set": to_mongo(changes)}
        if defaults:
            update["$setOnInsert"] = defaults
        db[COLLECTION].update_one({"_id": SETTINGS_ID}, update, upsert=True)
        logger.info("Updated settings: %s", ", ".join(sorted(changes)))
    return get_settings(db)


def set_logo(db: Database, path: str) -> Dict[str, Any]:
    return update_settings(db, {"logo": path})
