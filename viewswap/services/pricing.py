"""Promotion pricing and per-view reward tiers."""

from viewswap.core.config import get_settings

# (minimum duration in seconds, coins per completed view), longest first
REWARD_TIERS: tuple[tuple[int, int], ...] = (
    (540, 200),
    (480, 150),
    (420, 130),
    (360, 100),
    (300, 90),
    (240, 70),
    (180, 55),
    (150, 50),
    (120, 45),
    (90, 35),
    (60, 25),
    (45, 15),
    (30, 10),
)
MIN_REWARD = 5


def _ceil_div(a: int, b: int) -> int:
    return -(-a // b)


def reward_for_duration(duration_seconds: int) -> int:
    """Coins a viewer earns for watching a clip of this length (step function)."""
    for min_seconds, coins in REWARD_TIERS:
        if duration_seconds >= min_seconds:
            return coins
    return MIN_REWARD


def base_cost(target_views: int, duration_seconds: int) -> int:
    s = get_settings()
    return _ceil_div(target_views * duration_seconds * s.cost_per_view_second_num, s.cost_per_view_second_den)


def promotion_cost(target_views: int, duration_seconds: int, is_vip: bool = False) -> int:
    """Coins charged to promote ``target_views`` views of ``duration_seconds``; VIPs get a discount."""
    cost = base_cost(target_views, duration_seconds)
    if is_vip:
        cost = _ceil_div(cost * (100 - get_settings().vip_discount_percent), 100)
    return cost


def quote(target_views: int, duration_seconds: int, is_vip: bool = False) -> dict:
    full = base_cost(target_views, duration_seconds)
    cost = promotion_cost(target_views, duration_seconds, is_vip)
    return {
        "cost": cost,
        "base_cost": full,
        "vip_discount": full - cost,
        "reward_per_view": reward_for_duration(duration_seconds),
    }
