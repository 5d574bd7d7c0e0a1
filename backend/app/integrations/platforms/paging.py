"""
心跳增量拉取的封顶规则

平台接口的增量条件是 modified > cursor（严格大于）。如果在同一修改时间的一组商品中间截断，
下一轮用 cursor = 这组时间去拉，组里没拿到的那几条就永远拉不到了。
所以只在时间戳边界处截断：
    - 拉到的条数 <= cap：全部返回
    - 第 cap 条和第 cap+1 条时间不同：正好是边界，返回前 cap 条
    - 否则丢掉末尾那一组，下一轮从前一个时间戳继续（重复覆盖是幂等的）
    - 整个窗口都是同一时间戳：把这一组全部返回（允许超过 cap）
"""
from __future__ import annotations
from typing import Any, Callable, Dict, List

Item = Dict[str, Any]


def needs_more(items: List[Item], cap: int, key: Callable[[Item], Any]) -> bool:
    """还要不要继续翻页：至少要看到第 cap+1 条才知道边界在哪。"""
    if len(items) <= cap:
        return True
    # 整窗同一时间戳：要把这一组拉完
    return key(items[0]) == key(items[-1])


def cap_at_modified_boundary(items: List[Item], cap: int, key: Callable[[Item], Any]) -> List[Item]:
    if len(items) <= cap:
        return items
    boundary = key(items[cap - 1])
    if key(items[cap]) != boundary:
        return items[:cap]
    head = [i for i in items[:cap] if key(i) != boundary]
    if head:
        return head
    return [i for i in items if key(i) == boundary]
