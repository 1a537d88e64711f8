"""
The dashboard screen: one store per widget, the current mode, the audio
player, and the fire-and-forget mirror to the document store.

Local stores are the source of truth while the dashboard is open. Remote
writes are scheduled after the local mutation has already happened and are
never awaited, retried or rolled back.
"""
import asyncio
import logging
from datetime import date, datetime
from typing import Dict, List, Optional, Set

import accessors
from accessors import SessionContext, Unauthenticated
from playback import AudioPlayer
from widgets import (
    WIDGET_KINDS,
    Mode,
    Mutation,
    Operation,
    Store,
    apply,
    get_kind,
)

logger = logging.getLogger(__name__)


class DashboardClosed(LookupError):
    pass


# Widgets without an entry here (todos, journal) stay local only.
MIRRORS = {
    "notes": accessors.NOTES,
    "medications": accessors.MEDS,
    "calendar": accessors.CALENDAR,
    "recordings": accessors.RECORDS,
}

SAMPLE_RECORDINGS = [
    {
        "id": "sample-1",
        "name": "Message from Sarah",
        "url": "https://www.soundhelix.com/examples/mp3/SoundHelix-Song-1.mp3",
    },
    {
        "id": "sample-2",
        "name": "Reminder from John",
        "url": "https://interactive-examples.mdn.mozilla.net/media/cc0-audio/t-rex-roar.mp3",
    },
]


class Dashboard:
    def __init__(
        self,
        db,
        ctx: SessionContext,
        stores: Optional[Dict[str, Store]] = None,
        mode: Mode = Mode.PATIENT,
        player: Optional[AudioPlayer] = None,
    ):
        self.db = db
        self.ctx = ctx
        self.mode = Mode(mode)
        self.stores: Dict[str, Store] = {name: Store(kind) for name, kind in WIDGET_KINDS.items()}
        if stores:
            self.stores.update(stores)
        self.player = player if player is not None else AudioPlayer()
        self._pending: Set[asyncio.Task] = set()
        self.closed = False

    @classmethod
    async def open(
        cls,
        db,
        ctx: SessionContext,
        today: Optional[date] = None,
        player: Optional[AudioPlayer] = None,
    ) -> "Dashboard":
        """Load the mirrored widgets from the document store and start in patient mode."""
        ctx.require_user()
        today = today or date.today()
        stores = {}
        for name, collection in MIRRORS.items():
            docs = await collection.list_for_current_user(db, ctx)
            if name == "recordings" and not docs:
                docs = SAMPLE_RECORDINGS
            stores[name] = Store.load(get_kind(name), docs, today=today)
        logger.info(
            "Dashboard opened for %s (%s)",
            ctx.user_id,
            ", ".join(f"{name}={len(store)}" for name, store in stores.items()),
        )
        return cls(db, ctx, stores=stores, player=player)

    def store(self, kind_name: str) -> Store:
        if self.closed:
            raise DashboardClosed("Dashboard is not open")
        get_kind(kind_name)
        return self.stores[kind_name]

    def set_mode(self, mode: Mode):
        self.mode = Mode(mode)
        logger.info("Dashboard for %s switched to %s mode", self.ctx.user_id, self.mode.value)

    def allowed_operations(self, kind_name: str) -> List[str]:
        kind = get_kind(kind_name)
        return [op.value for op in Operation if kind.allows(self.mode, op)]

    def view(self, kind_name: str, selected_day=None):
        return self.store(kind_name).view(selected_day)

    def mutate(
        self,
        kind_name: str,
        operation: Operation,
        record_id: Optional[str] = None,
        values: Optional[dict] = None,
        now: Optional[datetime] = None,
        today: Optional[date] = None,
    ) -> Mutation:
        store = self.store(kind_name)
        mutation = apply(
            store,
            self.mode,
            operation,
            record_id=record_id,
            values=values,
            now=now,
            today=today,
        )
        if not mutation.applied:
            return mutation
        self.stores[kind_name] = mutation.store
        self._mirror(kind_name, mutation)
        return mutation

    def _mirror(self, kind_name: str, mutation: Mutation):
        collection = MIRRORS.get(kind_name)
        if collection is None:
            return
        if mutation.operation is Operation.DELETE:
            logger.debug("No remote delete for %s; %s stays in %s", kind_name, mutation.record.id, collection.name)
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop; %s %s not mirrored", kind_name, mutation.operation.value)
            return
        task = loop.create_task(self._push(collection, mutation))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _push(self, collection, mutation: Mutation):
        payload = mutation.record.model_dump(mode="json")
        try:
            if mutation.operation is Operation.CREATE:
                await collection.create(self.db, self.ctx, payload)
            else:
                matched = await collection.update(self.db, self.ctx, mutation.record.id, payload)
                if not matched:
                    logger.warning("Remote %s has no document %s to update", collection.name, mutation.record.id)
        except Unauthenticated as exc:
            logger.warning("Mirror to %s rejected: %s", collection.name, exc)
        except Exception:
            logger.exception("Mirror of %s %s to %s failed", mutation.operation.value, mutation.record.id, collection.name)

    async def drain(self):
        """Wait for scheduled mirror writes; used at close and in tests."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def play(self, record_id: str) -> Optional[str]:
        recording = self.store("recordings").get(record_id)
        return await self.player.toggle(recording)

    async def stop(self):
        await self.player.unload()

    async def close(self):
        self.closed = True
        await self.drain()
        await self.player.close()
        self.stores.clear()
        logger.info("Dashboard closed for %s", self.ctx.user_id)
