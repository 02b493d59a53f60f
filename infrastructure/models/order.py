"""
订单数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Text,
    Index, ForeignKey, CheckConstraint
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from .base import Base


class OrderModel(Base):
    """
    订单数据库模型

    这是数据库表的映射，不包含业务逻辑
    所有状态转换规则都在 domain.order.state_machine 中
    """
    __tablename__ = "orders"

    # 主键（UUID 字符串）
    id = Column(String(36), primary_key=True, comment="订单ID")
    order_number = Column(String(32), unique=True, nullable=False, index=True, comment="订单号 ES-<year>-NNNN")

    # 客户联系方式
    customer_email = Column(String(255), nullable=True, comment="客户邮箱")
    customer_name = Column(String(200), nullable=True, comment="客户姓名")
    customer_phone = Column(String(32), nullable=True, comment="客户电话")

    # 金额信息（使用 Numeric 存储精确金额）
    currency = Column(String(3), nullable=False, comment="货币代码 USD/XAF")
    amount_expected = Column(Numeric(precision=15, scale=2), nullable=False, comment="应付金额")
    amount_paid = Column(Numeric(precision=15, scale=2), nullable=True, comment="实付金额")

    # 状态（两个独立维度）
    status = Column(String(32), nullable=False, default="pending", index=True, comment="业务状态")
    payment_status = Column(String(32), nullable=False, default="pending", index=True, comment="支付状态")

    # 支付信息
    payment_provider = Column(String(32), nullable=True, comment="支付提供商: stripe/campay")
    payment_reference = Column(String(200), nullable=True, index=True, comment="支付渠道交易引用")
    paid_at = Column(DateTime(timezone=True), nullable=True, comment="支付完成时间")

    # 退款信息
    refund_amount = Column(Numeric(precision=15, scale=2), nullable=True, comment="退款金额")
    refund_reason = Column(Text, nullable=True, comment="退款原因")
    refund_reference = Column(String(200), nullable=True, comment="渠道退款ID")
    refunded_at = Column(DateTime(timezone=True), nullable=True, comment="退款时间")

    # 时间戳
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
        comment="创建时间"
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="更新时间"
    )

    # 乐观锁版本号
    version = Column(Integer, nullable=False, default=0, comment="版本号")

    history = relationship(
        "OrderStatusHistoryModel",
        back_populates="order",
        lazy="select",
        order_by="OrderStatusHistoryModel.id",
    )

    __table_args__ = (
        CheckConstraint("amount_expected > 0", name="ck_orders_amount_positive"),
        CheckConstraint("currency IN ('USD', 'XAF')", name="ck_orders_currency"),
        Index("ix_orders_status_payment_status", "status", "payment_status"),
        Index("ix_orders_provider_reference", "payment_provider", "payment_reference"),
    )

    def __repr__(self):
        return (
            f"<OrderModel(id='{self.id}', order_number='{self.order_number}', "
            f"status='{self.status}', payment_status='{self.payment_status}')>"
        )


class OrderStatusHistoryModel(Base):
    """
    订单状态历史（只追加）
    """
    __tablename__ = "order_status_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(
        String(36),
        ForeignKey("orders.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
        comment="关联订单ID"
    )
    old_status = Column(String(32), nullable=True, comment="原状态")
    new_status = Column(String(32), nullable=False, comment="新状态")
    changed_by = Column(String(255), nullable=False, comment="操作者: system 或管理员标识")
    notes = Column(Text, nullable=True, comment="备注")
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="创建时间"
    )

    order = relationship("OrderModel", back_populates="history")

    __table_args__ = (
        Index("ix_order_status_history_order_created", "order_id", "created_at"),
    )

    def __repr__(self):
        return (
            f"<OrderStatusHistoryModel(order_id='{self.order_id}', "
            f"{self.old_status!r} -> {self.new_status!r}, by='{self.changed_by}')>"
        )
