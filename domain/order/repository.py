"""
订单仓储接口 - Order Store 抽象
"""
from abc import ABC, abstractmethod
from typing import List, Optional

from .entity import Order, StatusHistoryEntry


class OrderRepository(ABC):
    """订单仓储抽象接口。写操作都在调用方的 Unit of Work 事务内执行。"""

    @abstractmethod
    async def get(self, order_id: str) -> Optional[Order]:
        """根据ID获取订单"""
        pass

    @abstractmethod
    async def get_for_update(self, order_id: str) -> Optional[Order]:
        """获取订单并加行锁（SELECT ... FOR UPDATE）"""
        pass

    @abstractmethod
    async def update(self, order: Order, expected_version: int) -> Order:
        """
        更新订单

        Raises ConcurrentUpdateException when the stored version no longer
        equals ``expected_version``. Returns the order with the bumped version.
        """
        pass

    @abstractmethod
    async def insert_history(self, entry: StatusHistoryEntry) -> None:
        """追加状态历史记录"""
        pass

    @abstractmethod
    async def list_history(self, order_id: str) -> List[StatusHistoryEntry]:
        """按时间顺序列出订单状态历史"""
        pass
