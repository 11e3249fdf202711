"""ID 生成 -- {base36(epoch 毫秒)}-{4 位随机字母数字}

前缀按创建时间近似有序；随机后缀保证多分支并发创建时冲突概率足够低。
"""

import secrets
from datetime import UTC, datetime, timedelta

_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"
SUFFIX_LENGTH = 4
_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def base36_encode(n: int) -> str:
    """非负整数转 base36 小写字符串"""
    if n < 0:
        raise ValueError(f"base36 只支持非负整数: {n}")
    if n == 0:
        return "0"
    digits = []
    while n > 0:
        n, rem = divmod(n, 36)
        digits.append(_ALPHABET[rem])
    return "".join(reversed(digits))


def generate_id(now: datetime | None = None) -> str:
    """生成任务/Stream ID

    Args:
        now: 创建时刻，默认当前 UTC 时间

    Returns:
        形如 "mb3k2x9a-7f0q" 的 ID
    """
    moment = now or datetime.now(UTC)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    millis = (moment - _EPOCH) // timedelta(milliseconds=1)
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(SUFFIX_LENGTH))
    return f"{base36_encode(millis)}-{suffix}"
