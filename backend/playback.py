"""
Voice-recording playback.

Only one recording is ever loaded: starting another one unloads whatever is
current first. The transport does the actual loading; the default one opens
the recording URL as an httpx stream.
"""
import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class PlaybackError(Exception):
    pass


class StreamHandle:
    def __init__(self, response: httpx.Response):
        self.response = response
        self.playing = False

    async def play(self):
        self.playing = True

    async def pause(self):
        self.playing = False

    async def unload(self):
        self.playing = False
        await self.response.aclose()


class HttpStreamTransport:
    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self._client = client
        self._owns_client = client is None

    async def load(self, url: str) -> StreamHandle:
        if self._client is None:
            self._client = httpx.AsyncClient(follow_redirects=True)
        request = self._client.build_request("GET", url)
        response = await self._client.send(request, stream=True)
        if response.is_error:
            await response.aclose()
            response.raise_for_status()
        return StreamHandle(response)

    async def aclose(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


class AudioPlayer:
    def __init__(self, transport=None):
        self.transport = transport if transport is not None else HttpStreamTransport()
        self.current_id: Optional[str] = None
        self._handle = None
        self.loaded_id: Optional[str] = None

    async def toggle(self, recording) -> Optional[str]:
        """Pause the recording if it is playing, otherwise switch to it.

        Returns the id of the recording now playing, or None after a pause.
        """
        if self.current_id == recording.id and self._handle is not None:
            await self._handle.pause()
            self.current_id = None
            return None

        await self.unload()
        try:
            handle = await self.transport.load(recording.url)
        except Exception as exc:
            logger.error("Audio playback error for %s: %s", recording.id, exc)
            raise PlaybackError("Failed to play the recording.") from exc
        self._handle = handle
        self.loaded_id = recording.id
        await handle.play()
        self.current_id = recording.id
        return self.current_id

    def finished(self):
        self.current_id = None

    async def unload(self):
        handle, self._handle = self._handle, None
        self.current_id = None
        self.loaded_id = None
        if handle is not None:
            await handle.unload()

    async def close(self):
        await self.unload()
        aclose = getattr(self.transport, "aclose", None)
        if aclose is not None:
            await aclose()
