from __future__ import annotations


def calc_next_delay(attempts: int, base_seconds: float = 1, max_seconds: float = 300) -> float:
    """
    指数退避：delay = min(base * 2^attempts, max)。
    attempts: 本次失败后的累计尝试次数（即将写入的 attempt_count）。
    对 attempts 单调不减，封顶 max_seconds。
    """
    attempts = max(0, int(attempts))
    # 先封顶指数，避免 2**attempts 过大
    if attempts >= 64:
        return float(max_seconds)
    return float(min(max_seconds, base_seconds * (2 ** attempts)))


def calc_retry_sleep(attempt: int, base_seconds: float = 2.0) -> float:
    """读接口（导入/心跳）重试等待：base * 2^attempt，attempt 从 0 开始。"""
    return float(base_seconds) * (2 ** max(0, int(attempt)))
