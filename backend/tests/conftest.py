"""
Shared fixtures: in-memory stand-ins for the motor database and the audio
transport, so accessor, playback, dashboard and API tests run without
MongoDB or network audio.
"""
import copy
import os

import pytest

os.environ.setdefault("JWT_SECRET_KEY", "test_secret_key")


class _Result:
    def __init__(self, matched_count=0, deleted_count=0):
        self.matched_count = matched_count
        self.modified_count = matched_count
        self.deleted_count = deleted_count


class _Cursor:
    def __init__(self, docs):
        self._docs = docs

    async def to_list(self, length=None):
        return self._docs if length is None else self._docs[:length]


def _matches(doc, query):
    return all(doc.get(k) == v for k, v in query.items())


def _project(doc, projection):
    doc = copy.deepcopy(doc)
    if projection and projection.get("_id") == 0:
        doc.pop("_id", None)
    return doc


class FakeCollection:
    def __init__(self, name):
        self.name = name
        self.docs = []

    async def insert_one(self, doc):
        # motor adds _id to the caller's dict
        doc["_id"] = f"oid_{len(self.docs) + 1}"
        self.docs.append(copy.deepcopy(doc))

    def find(self, query, projection=None):
        return _Cursor([_project(d, projection) for d in self.docs if _matches(d, query)])

    async def find_one(self, query, projection=None):
        for doc in self.docs:
            if _matches(doc, query):
                return _project(doc, projection)
        return None

    async def update_one(self, query, update):
        for doc in self.docs:
            if _matches(doc, query):
                doc.update(copy.deepcopy(update.get("$set", {})))
                return _Result(matched_count=1)
        return _Result()

    async def delete_one(self, query):
        for idx, doc in enumerate(self.docs):
            if _matches(doc, query):
                del self.docs[idx]
                return _Result(deleted_count=1)
        return _Result()


class BrokenCollection(FakeCollection):
    async def insert_one(self, doc):
        raise ConnectionError("document store unreachable")

    async def update_one(self, query, update):
        raise ConnectionError("document store unreachable")


class FakeDatabase:
    def __init__(self):
        self.collections = {}

    def __getitem__(self, name):
        if name not in self.collections:
            self.collections[name] = FakeCollection(name)
        return self.collections[name]

    def __getattr__(self, name):
        if name.startswith("_") or name == "collections":
            raise AttributeError(name)
        return self[name]


class FakeHandle:
    def __init__(self, url, log):
        self.url = url
        self.log = log

    async def play(self):
        self.log.append(("play", self.url))

    async def pause(self):
        self.log.append(("pause", self.url))

    async def unload(self):
        self.log.append(("unload", self.url))


class FakeTransport:
    def __init__(self, fail_on=()):
        self.log = []
        self.fail_on = set(fail_on)

    async def load(self, url):
        if url in self.fail_on:
            raise OSError("cannot open stream")
        self.log.append(("load", url))
        return FakeHandle(url, self.log)

    def loaded(self):
        """URLs currently loaded according to the log."""
        live = []
        for action, url in self.log:
            if action == "load":
                live.append(url)
            elif action == "unload":
                live.remove(url)
        return live


@pytest.fixture
def fake_db():
    return FakeDatabase()
