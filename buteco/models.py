from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

# collection names shared by both store backends
USERS = "users"
MENU_ITEMS = "menu_items"
TABLES = "tables"
LINE_ITEMS = "line_items"  # sub-collection of TABLES
DAILY_AGGREGATES = "daily_aggregates"


def money(value) -> float:
    """round a monetary amount to cents"""
    return round(float(value), 2)


class Role(Enum):
    """staff roles"""
    ADMIN = "admin"
    CASHIER = "cashier"
    WAITER = "waiter"
    KITCHEN = "kitchen"


class TableStatus(Enum):
    OPEN = "open"
    CLOSED = "closed"


class LineItemStatus(Enum):
    """forward-only order status; declaration order is the lifecycle order"""
    PENDING = "pending"
    PREPARING = "preparing"
    READY = "ready"
    DELIVERED = "delivered"
    PAID = "paid"

    @property
    def rank(self) -> int:
        return list(LineItemStatus).index(self)

    def can_advance_to(self, target: "LineItemStatus") -> bool:
        """true if target is strictly later in the lifecycle"""
        return target.rank > self.rank


@dataclass
class User:
    id: str
    name: str
    role: Role
    password_hash: str
    is_active: bool = True
    created_at: datetime | None = None

    @classmethod
    def from_record(cls, rec: dict) -> "User":
        return cls(
            id=rec["id"],
            name=rec["name"],
            role=Role(rec["role"]),
            password_hash=rec["password_hash"],
            is_active=bool(rec.get("is_active", True)),
            created_at=rec.get("created_at"),
        )


@dataclass
class MenuItem:
    id: str
    name: str
    price: float
    category: str = ""
    description: str = ""
    available: bool = True
    created_at: datetime | None = None

    @classmethod
    def from_record(cls, rec: dict) -> "MenuItem":
        return cls(
            id=rec["id"],
            name=rec["name"],
            price=money(rec["price"]),
            category=rec.get("category") or "",
            description=rec.get("description") or "",
            available=bool(rec.get("available", True)),
            created_at=rec.get("created_at"),
        )


@dataclass
class Table:
    """seating unit; caches totals derived from its line items"""
    id: str
    name: str
    status: TableStatus = TableStatus.OPEN
    total_orders: int = 0
    total_revenue: float = 0.0
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_open(self) -> bool:
        return self.status is TableStatus.OPEN

    @classmethod
    def from_record(cls, rec: dict) -> "Table":
        return cls(
            id=rec["id"],
            name=rec["name"],
            status=TableStatus(rec.get("status", "open")),
            total_orders=int(rec.get("total_orders") or 0),
            total_revenue=money(rec.get("total_revenue") or 0),
            created_at=rec.get("created_at"),
            updated_at=rec.get("updated_at"),
        )


@dataclass
class OrderLineItem:
    """one ordered item (with quantity) attached to a table"""
    id: str
    table_id: str
    item_name: str
    unit_price: float
    quantity: int
    status: LineItemStatus = LineItemStatus.PENDING
    added_by: str = ""
    menu_item_id: str | None = None
    created_at: datetime | None = None

    @property
    def line_total(self) -> float:
        return money(self.unit_price * self.quantity)

    @classmethod
    def from_record(cls, rec: dict) -> "OrderLineItem":
        return cls(
            id=rec["id"],
            table_id=rec["parent_id"],
            item_name=rec["item_name"],
            unit_price=money(rec["unit_price"]),
            quantity=int(rec["quantity"]),
            status=LineItemStatus(rec.get("status", "pending")),
            added_by=rec.get("added_by") or "",
            menu_item_id=rec.get("menu_item_id"),
            created_at=rec.get("created_at"),
        )


@dataclass
class DailyAggregate:
    """increment-only counters for one calendar date"""
    id: str
    date: str
    tables_opened: int = 0
    total_orders: int = 0
    total_revenue: float = 0.0
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_record(cls, rec: dict) -> "DailyAggregate":
        return cls(
            id=rec["id"],
            date=rec["date"],
            tables_opened=int(rec.get("tables_opened") or 0),
            total_orders=int(rec.get("total_orders") or 0),
            total_revenue=money(rec.get("total_revenue") or 0),
            created_at=rec.get("created_at"),
            updated_at=rec.get("updated_at"),
        )


@dataclass(frozen=True)
class RealtimeStats:
    """counters for a date mixed with the live count of open tables"""
    tables_opened_today: int
    orders_today: int
    revenue_today: float
    currently_open_tables: int


@dataclass(frozen=True)
class TopItem:
    item: str
    quantity: int
    revenue: float


@dataclass
class DailySummary:
    date: str
    total_orders: int
    total_revenue: float
    open_tables_now: int
    tables_opened_on_date: int
    top_items: list[TopItem] = field(default_factory=list)

    @property
    def average_ticket(self) -> float:
        """revenue per order, 0 when there were no orders"""
        if self.total_orders <= 0:
            return 0.0
        return money(self.total_revenue / self.total_orders)
