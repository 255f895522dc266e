"""
TikTok Live upstream client
Adapts TikTokLive's event objects to the raw payload shapes the normalizer consumes
"""
import asyncio
import logging
from typing import Any, Dict, Optional

from TikTokLive import TikTokLiveClient
from TikTokLive.events import (
    CommentEvent,
    ConnectEvent,
    DisconnectEvent,
    GiftEvent,
    LikeEvent,
    SocialEvent,
)

from relay.services.upstream import EventSink, UpstreamConnectError, UpstreamEventFamily

logger = logging.getLogger(__name__)


def _path(obj: Any, dotted: str) -> Any:
    """Follow a dotted attribute path, returning None at the first missing link"""
    for name in dotted.split("."):
        if obj is None:
            return None
        obj = getattr(obj, name, None)
    return obj


def _user_fields(user: Any) -> Dict[str, Any]:
    avatar = None
    urls = _path(user, "avatar_thumb.m_urls") or _path(user, "avatar_thumb.url_list")
    if urls:
        avatar = urls[0]
    return {
        "uniqueId": _path(user, "unique_id"),
        "nickname": _path(user, "nickname"),
        "profilePictureUrl": avatar,
    }


class TikTokLiveUpstream:
    """One TikTok Live connection for one streamer"""

    def __init__(self, tenant_id: str, sink: EventSink):
        self.tenant_id = tenant_id
        self.sink = sink
        self.client = TikTokLiveClient(unique_id=f"@{tenant_id}")
        self._task: Optional[asyncio.Task] = None

        self.client.add_listener(CommentEvent, self._on_comment)
        self.client.add_listener(LikeEvent, self._on_like)
        self.client.add_listener(SocialEvent, self._on_social)
        self.client.add_listener(GiftEvent, self._on_gift)
        self.client.add_listener(ConnectEvent, self._on_connect)
        self.client.add_listener(DisconnectEvent, self._on_disconnect)

    async def connect(self) -> None:
        """Open the live connection; raises if the streamer is offline or unknown"""
        try:
            self._task = await self.client.start(fetch_room_info=False)
        except Exception as e:
            raise UpstreamConnectError(f"Cannot connect to @{self.tenant_id}: {e}") from e
        self._task.add_done_callback(self._on_task_done)

    async def disconnect(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.remove_done_callback(self._on_task_done)
        # The client is single-use; release its HTTP session with the socket
        await self.client.disconnect(close_client=True)

    def _on_task_done(self, task: asyncio.Task):
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        logger.warning("TikTok client for %s stopped: %s", self.tenant_id, exc)
        self.sink(UpstreamEventFamily.ERROR, {"message": str(exc)})
        self.sink(UpstreamEventFamily.DISCONNECTED, {})

    async def _on_comment(self, event: CommentEvent):
        self.sink(UpstreamEventFamily.CHAT, {"comment": event.comment, **_user_fields(event.user)})

    async def _on_like(self, event: LikeEvent):
        self.sink(
            UpstreamEventFamily.LIKE,
            {"likeCount": event.count, "totalLikeCount": event.total, **_user_fields(event.user)},
        )

    async def _on_social(self, event: SocialEvent):
        display_type = _path(event, "common.display_text.key") or _path(event, "base_message.display_text.key")
        self.sink(UpstreamEventFamily.SOCIAL, {"displayType": display_type, **_user_fields(event.user)})

    async def _on_gift(self, event: GiftEvent):
        # Streakable gifts fire once per combo tick; report the final count only
        if _path(event, "gift.streakable") and getattr(event, "streaking", False):
            return
        self.sink(
            UpstreamEventFamily.GIFT,
            {
                "diamondCount": _path(event, "gift.diamond_count"),
                "giftName": _path(event, "gift.name"),
                "repeatCount": getattr(event, "repeat_count", None),
                **_user_fields(event.user),
            },
        )

    async def _on_connect(self, event: ConnectEvent):
        self.sink(UpstreamEventFamily.CONNECTED, {"roomId": getattr(event, "room_id", None)})

    async def _on_disconnect(self, event: DisconnectEvent):
        self.sink(UpstreamEventFamily.DISCONNECTED, {})


def create_tiktok_upstream(tenant_id: str, sink: EventSink) -> TikTokLiveUpstream:
    """UpstreamFactory for the production app"""
    return TikTokLiveUpstream(tenant_id, sink)
