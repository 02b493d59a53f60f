"""
订单仓储实现 - 使用SQLAlchemy实现数据访问
"""
from dataclasses import replace
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.common.exceptions import ConcurrentUpdateException
from domain.order.entity import Order, StatusHistoryEntry
from domain.order.repository import OrderRepository
from infrastructure.models.order import OrderModel, OrderStatusHistoryModel


logger = get_logger(__name__)


def _decimal(value) -> Optional[Decimal]:
    return Decimal(str(value)) if value is not None else None


class SQLAlchemyOrderRepository(OrderRepository):
    """订单仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: OrderModel) -> Order:
        """将数据库模型转换为领域实体"""
        return Order(
            id=model.id,
            order_number=model.order_number,
            currency=model.currency,
            amount_expected=_decimal(model.amount_expected),
            customer_email=model.customer_email,
            customer_name=model.customer_name,
            customer_phone=model.customer_phone,
            status=model.status,
            payment_status=model.payment_status,
            amount_paid=_decimal(model.amount_paid),
            payment_provider=model.payment_provider,
            payment_reference=model.payment_reference,
            paid_at=model.paid_at,
            refund_amount=_decimal(model.refund_amount),
            refund_reason=model.refund_reason,
            refund_reference=model.refund_reference,
            refunded_at=model.refunded_at,
            created_at=model.created_at,
            updated_at=model.updated_at,
            version=model.version,
        )

    @staticmethod
    def _mutable_columns(entity: Order) -> dict:
        return {
            "customer_email": entity.customer_email,
            "customer_name": entity.customer_name,
            "customer_phone": entity.customer_phone,
            "status": entity.status.value,
            "payment_status": entity.payment_status.value,
            "amount_paid": entity.amount_paid,
            "payment_provider": entity.payment_provider,
            "payment_reference": entity.payment_reference,
            "paid_at": entity.paid_at,
            "refund_amount": entity.refund_amount,
            "refund_reason": entity.refund_reason,
            "refund_reference": entity.refund_reference,
            "refunded_at": entity.refunded_at,
            "updated_at": entity.updated_at,
        }

    async def get(self, order_id: str) -> Optional[Order]:
        """根据ID获取订单"""
        result = await self.session.execute(
            select(OrderModel).where(OrderModel.id == order_id)
        )
        db_order = result.scalar_one_or_none()
        return self._to_entity(db_order) if db_order else None

    async def get_for_update(self, order_id: str) -> Optional[Order]:
        """获取订单并加行锁（SQLite 下 FOR UPDATE 被忽略，依赖版本号检查）"""
        result = await self.session.execute(
            select(OrderModel)
            .where(OrderModel.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        db_order = result.scalar_one_or_none()
        return self._to_entity(db_order) if db_order else None

    async def update(self, order: Order, expected_version: int) -> Order:
        """按版本号条件更新订单（乐观锁）"""
        new_version = expected_version + 1
        result = await self.session.execute(
            update(OrderModel)
            .where(OrderModel.id == order.id, OrderModel.version == expected_version)
            .values(version=new_version, **self._mutable_columns(order))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning("order_update_conflict", order_id=order.id, expected_version=expected_version)
            raise ConcurrentUpdateException(order.id, expected_version)
        return replace(order, version=new_version)

    async def insert_history(self, entry: StatusHistoryEntry) -> None:
        """追加状态历史记录"""
        self.session.add(
            OrderStatusHistoryModel(
                order_id=entry.order_id,
                old_status=entry.old_status,
                new_status=entry.new_status,
                changed_by=entry.changed_by,
                notes=entry.notes,
                created_at=entry.created_at,
            )
        )
        await self.session.flush()

    async def list_history(self, order_id: str) -> List[StatusHistoryEntry]:
        """按时间顺序列出订单状态历史"""
        result = await self.session.execute(
            select(OrderStatusHistoryModel)
            .where(OrderStatusHistoryModel.order_id == order_id)
            .order_by(OrderStatusHistoryModel.created_at, OrderStatusHistoryModel.id)
        )
        return [
            StatusHistoryEntry(
                order_id=row.order_id,
                old_status=row.old_status,
                new_status=row.new_status,
                changed_by=row.changed_by,
                notes=row.notes,
                created_at=row.created_at,
            )
            for row in result.scalars().all()
        ]

