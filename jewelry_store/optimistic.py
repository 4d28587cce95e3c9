"""
乐观更新辅助函数。
先在本地应用修改，再提交服务器；提交失败时回滚本地状态并把异常继续抛给调用方。
"""
from typing import Callable, TypeVar

T = TypeVar("T")


def optimistic_update(
    apply: Callable[[], None],
    rollback: Callable[[], None],
    commit: Callable[[], T],
) -> T:
    apply()
    try:
        return commit()
    except Exception:
        rollback()
        raise
