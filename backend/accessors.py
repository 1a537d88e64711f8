"""
Per-collection accessors for the MongoDB document store.

Every call takes the session explicitly: the accessor never reads a global
user id, so a request without a signed-in user fails with ``Unauthenticated``
at this boundary regardless of the caller.
"""
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple


class Unauthenticated(Exception):
    pass


@dataclass(frozen=True)
class SessionContext:
    user_id: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None

    def require_user(self) -> str:
        if not self.user_id:
            raise Unauthenticated("User ID not found in session.")
        return self.user_id


class RemoteCollection:
    """create / list / update over one collection, scoped by ``user_id``."""

    def __init__(self, name: str, fields: Tuple[str, ...], id_prefix: str):
        self.name = name
        self.fields = fields
        self.id_prefix = id_prefix

    def __repr__(self):
        return f"<{type(self).__name__} {self.name}>"

    def _pick(self, fields: Dict) -> Dict:
        return {k: v for k, v in fields.items() if k in self.fields}

    async def create(self, db, ctx: SessionContext, fields: Dict) -> str:
        user_id = ctx.require_user()
        doc_id = fields.get("id") or f"{self.id_prefix}_{uuid.uuid4().hex[:12]}"
        doc = {
            "id": doc_id,
            "user_id": user_id,
            **self._pick(fields),
            "createdAt": datetime.now(timezone.utc).isoformat(),
        }
        await db[self.name].insert_one(doc)
        return doc_id

    async def list_for_current_user(self, db, ctx: SessionContext) -> List[Dict]:
        user_id = ctx.require_user()
        docs = await db[self.name].find({"user_id": user_id}, {"_id": 0}).to_list(None)
        return docs

    async def update(self, db, ctx: SessionContext, doc_id: str, fields: Dict) -> bool:
        user_id = ctx.require_user()
        update_data = self._pick(fields)
        update_data["updatedAt"] = datetime.now(timezone.utc).isoformat()
        result = await db[self.name].update_one(
            {"id": doc_id, "user_id": user_id},
            {"$set": update_data}
        )
        return result.matched_count > 0


class DeletableCollection(RemoteCollection):
    async def delete(self, db, ctx: SessionContext, doc_id: str) -> bool:
        user_id = ctx.require_user()
        result = await db[self.name].delete_one({"id": doc_id, "user_id": user_id})
        return result.deleted_count > 0


NOTES = RemoteCollection("notes", ("title", "content", "last_modified"), "note")
MEDS = RemoteCollection("meds", ("name", "dosage", "time", "taken_today", "last_taken_date"), "med")
CALENDAR = RemoteCollection("calender", ("date", "title", "description"), "event")
RECORDS = RemoteCollection("records", ("name", "url"), "recording")
PICTURES = DeletableCollection("pictures", ("title", "url", "description"), "picture")
