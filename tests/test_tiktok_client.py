"""
Translation of TikTokLive event objects into raw upstream payloads
"""
from types import SimpleNamespace

import pytest

pytest.importorskip("TikTokLive")

from relay.services.tiktok_client import TikTokLiveUpstream, _path, _user_fields  # noqa: E402
from relay.services.upstream import UpstreamEventFamily  # noqa: E402

USER = SimpleNamespace(
    unique_id="fan42",
    nickname="Fan",
    avatar_thumb=SimpleNamespace(m_urls=["https://img/fan.png", "https://img/fan@2x.png"]),
)


def make_adapter():
    """Adapter without a live TikTokLiveClient behind it"""
    received = []
    adapter = TikTokLiveUpstream.__new__(TikTokLiveUpstream)
    adapter.tenant_id = "alice"
    adapter.sink = lambda family, raw: received.append((family, raw))
    adapter._task = None
    return adapter, received


def test_path_stops_at_missing_attribute():
    assert _path(USER, "avatar_thumb.m_urls")[0] == "https://img/fan.png"
    assert _path(USER, "gift.name") is None
    assert _path(None, "anything") is None


def test_user_fields():
    assert _user_fields(USER) == {
        "uniqueId": "fan42",
        "nickname": "Fan",
        "profilePictureUrl": "https://img/fan.png",
    }
    assert _user_fields(None)["uniqueId"] is None


async def test_comment_is_reported_as_chat():
    adapter, received = make_adapter()

    await adapter._on_comment(SimpleNamespace(comment="Hit", user=USER))

    family, raw = received[0]
    assert family is UpstreamEventFamily.CHAT
    assert raw["comment"] == "Hit"
    assert raw["uniqueId"] == "fan42"


async def test_gift_streak_is_reported_once():
    adapter, received = make_adapter()
    gift = SimpleNamespace(name="Rose", diamond_count=1, streakable=True)

    await adapter._on_gift(SimpleNamespace(gift=gift, streaking=True, repeat_count=3, user=USER))
    await adapter._on_gift(SimpleNamespace(gift=gift, streaking=False, repeat_count=5, user=USER))

    assert len(received) == 1
    family, raw = received[0]
    assert family is UpstreamEventFamily.GIFT
    assert raw["diamondCount"] == 1
    assert raw["giftName"] == "Rose"
    assert raw["repeatCount"] == 5


async def test_social_display_type():
    adapter, received = make_adapter()
    common = SimpleNamespace(display_text=SimpleNamespace(key="pm_mt_msg_viewer_share"))

    await adapter._on_social(SimpleNamespace(common=common, user=USER))

    assert received[0][1]["displayType"] == "pm_mt_msg_viewer_share"


async def test_like_and_connection_events():
    adapter, received = make_adapter()

    await adapter._on_like(SimpleNamespace(count=4, total=90, user=USER))
    await adapter._on_connect(SimpleNamespace(room_id=7312))
    await adapter._on_disconnect(SimpleNamespace())

    assert [family for family, _ in received] == [
        UpstreamEventFamily.LIKE,
        UpstreamEventFamily.CONNECTED,
        UpstreamEventFamily.DISCONNECTED,
    ]
    assert received[0][1]["likeCount"] == 4
    assert received[0][1]["totalLikeCount"] == 90
    assert received[1][1]["roomId"] == 7312


async def test_disconnect_closes_http_session():
    calls = []

    class Client:
        async def disconnect(self, close_client=False):
            calls.append(close_client)

    adapter, _ = make_adapter()
    adapter.client = Client()

    await adapter.disconnect()

    assert calls == [True]
