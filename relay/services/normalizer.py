"""
Upstream payload normalization
Converts raw live-event payloads into CanonicalEvents. Every function here is pure
apart from the random attack damage, which takes an injectable generator.
"""
import logging
import random
from typing import Any, Callable, Dict, List, Mapping, Optional

from relay.models.events import CanonicalEvent, EventKind, EventUser, GiftType, now_ms
from relay.services.upstream import UpstreamEventFamily

logger = logging.getLogger(__name__)

JOIN_COMMANDS = frozenset({"join", "thamgia"})
ATTACK_COMMANDS = frozenset({"hit", "danh", "attack"})
ATTACK_DAMAGE_MIN = 5
ATTACK_DAMAGE_MAX = 14

SHARE_DISPLAY_TYPE = "pm_mt_msg_viewer_share"

# Gift value fields in precedence order; the first positive number wins.
GIFT_VALUE_FIELDS = ("diamondCount", "giftValue")
DEFAULT_GIFT_VALUE = 1
DEFAULT_GIFT_NAME = "Unknown Gift"

MEDIUM_GIFT_MIN = 10
LARGE_GIFT_MIN = 100


def resolve_gift_value(raw: Mapping[str, Any]) -> float:
    """Resolve the coin value of a gift from whichever field carries it"""
    for field in GIFT_VALUE_FIELDS:
        value = raw.get(field)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            continue
        if value > 0:
            return value
    return DEFAULT_GIFT_VALUE


def classify_gift(value: float) -> GiftType:
    """Bucket a gift value into small / medium / large"""
    if value >= LARGE_GIFT_MIN:
        return GiftType.LARGE
    if value >= MEDIUM_GIFT_MIN:
        return GiftType.MEDIUM
    return GiftType.SMALL


def normalize_comment(comment: Any) -> str:
    """Lower-case and trim a chat comment for command matching"""
    if not isinstance(comment, str):
        return ""
    return comment.lower().strip()


def extract_user(raw: Mapping[str, Any]) -> EventUser:
    """Read the viewer from a nested ``user`` mapping or the top-level fields"""
    source = raw.get("user")
    if not isinstance(source, Mapping):
        source = raw
    return EventUser(
        id=source.get("uniqueId"),
        display_name=source.get("nickname"),
        avatar_url=source.get("profilePictureUrl"),
    )


def _chat(tenant_id: str, raw: Mapping[str, Any], ts: int, rng: random.Random) -> List[CanonicalEvent]:
    user = extract_user(raw)
    message = normalize_comment(raw.get("comment"))

    events = [
        CanonicalEvent(
            kind=EventKind.CHAT,
            tenant_id=tenant_id,
            user=user,
            payload={"comment": message, "rawData": dict(raw)},
            timestamp=ts,
        )
    ]

    if message in JOIN_COMMANDS:
        events.append(CanonicalEvent(kind=EventKind.PLAYER_JOIN, tenant_id=tenant_id, user=user, timestamp=ts))
        logger.info("[%s] Player join: %s", tenant_id, user.display_name)

    if message in ATTACK_COMMANDS:
        damage = rng.randint(ATTACK_DAMAGE_MIN, ATTACK_DAMAGE_MAX)
        events.append(
            CanonicalEvent(
                kind=EventKind.PLAYER_ATTACK,
                tenant_id=tenant_id,
                user=user,
                payload={"damage": damage},
                timestamp=ts,
            )
        )
        logger.info("[%s] Player attack: %s", tenant_id, user.display_name)

    return events


def _like(tenant_id: str, raw: Mapping[str, Any], ts: int, rng: random.Random) -> List[CanonicalEvent]:
    user = extract_user(raw)
    logger.debug("[%s] Like: %s from %s", tenant_id, raw.get("likeCount"), user.display_name)
    return [
        CanonicalEvent(
            kind=EventKind.LIKE,
            tenant_id=tenant_id,
            user=user,
            payload={"likeCount": raw.get("likeCount"), "totalLikeCount": raw.get("totalLikeCount")},
            timestamp=ts,
        )
    ]


def _social(tenant_id: str, raw: Mapping[str, Any], ts: int, rng: random.Random) -> List[CanonicalEvent]:
    # Follows and other social subtypes are not relayed
    if raw.get("displayType") != SHARE_DISPLAY_TYPE:
        return []
    user = extract_user(raw)
    logger.debug("[%s] Share from %s", tenant_id, user.display_name)
    return [CanonicalEvent(kind=EventKind.SHARE, tenant_id=tenant_id, user=user, timestamp=ts)]


def _gift_name(raw: Mapping[str, Any]) -> str:
    name = raw.get("giftName")
    if name:
        return name
    details = raw.get("giftDetails")
    if isinstance(details, Mapping) and details.get("giftName"):
        return details["giftName"]
    return DEFAULT_GIFT_NAME


def _gift(tenant_id: str, raw: Mapping[str, Any], ts: int, rng: random.Random) -> List[CanonicalEvent]:
    user = extract_user(raw)
    gift_value = resolve_gift_value(raw)
    gift_type = classify_gift(gift_value)
    payload = {
        "giftName": _gift_name(raw),
        "giftValue": gift_value,
        "repeatCount": raw.get("repeatCount") or 1,
        "giftType": gift_type.value,
        "rawData": dict(raw),
    }
    logger.info(
        "[%s] Gift: %s x%s (%s)", tenant_id, payload["giftName"], payload["repeatCount"], gift_type.value
    )

    # The legacy name is kept for games that predate tiktok_gift
    return [
        CanonicalEvent(kind=kind, tenant_id=tenant_id, user=user, payload=dict(payload), timestamp=ts)
        for kind in (EventKind.GIFT, EventKind.GIFT_RECEIVED)
    ]


def _connected(tenant_id: str, raw: Mapping[str, Any], ts: int, rng: random.Random) -> List[CanonicalEvent]:
    return [
        CanonicalEvent(kind=EventKind.CONNECTED, tenant_id=tenant_id, payload={"roomId": raw.get("roomId")}, timestamp=ts)
    ]


def _disconnected(tenant_id: str, raw: Mapping[str, Any], ts: int, rng: random.Random) -> List[CanonicalEvent]:
    return [CanonicalEvent(kind=EventKind.DISCONNECTED, tenant_id=tenant_id, timestamp=ts)]


def _error(tenant_id: str, raw: Mapping[str, Any], ts: int, rng: random.Random) -> List[CanonicalEvent]:
    return [
        CanonicalEvent(kind=EventKind.ERROR, tenant_id=tenant_id, payload={"message": raw.get("message")}, timestamp=ts)
    ]


_NORMALIZERS: Dict[UpstreamEventFamily, Callable[..., List[CanonicalEvent]]] = {
    UpstreamEventFamily.CHAT: _chat,
    UpstreamEventFamily.LIKE: _like,
    UpstreamEventFamily.SOCIAL: _social,
    UpstreamEventFamily.GIFT: _gift,
    UpstreamEventFamily.CONNECTED: _connected,
    UpstreamEventFamily.DISCONNECTED: _disconnected,
    UpstreamEventFamily.ERROR: _error,
}


def normalize(
    tenant_id: str,
    family: UpstreamEventFamily,
    raw: Optional[Mapping[str, Any]],
    now: Optional[int] = None,
    rng: Optional[random.Random] = None,
) -> List[CanonicalEvent]:
    """
    Convert one raw upstream event into zero or more canonical events.
    A single chat or gift may fan out into several events; all share one timestamp.
    """
    try:
        family = UpstreamEventFamily(family)
    except ValueError:
        logger.debug("[%s] Ignoring unknown upstream event family %r", tenant_id, family)
        return []

    handler = _NORMALIZERS[family]
    return handler(
        tenant_id,
        raw or {},
        now if now is not None else now_ms(),
        rng or random,
    )
