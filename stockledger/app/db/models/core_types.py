import enum

class Role(str, enum.Enum):
    admin = "admin"
    manager = "manager"
    user = "user"

class TransactionType(str, enum.Enum):
    receive = "receive"
    transfer_in = "transfer_in"
    transfer_out = "transfer_out"
    adjustment = "adjustment"
    production = "production"

class ReferenceType(str, enum.Enum):
    order_receiving = "order_receiving"
    purchase_order = "purchase_order"
    withdrawal = "withdrawal"
    withdrawal_update = "withdrawal_update"
    stock_check = "stock_check"
    production_transform = "production_transform"
    manual = "manual"

class OrderStatus(str, enum.Enum):
    submitted = "submitted"
    completed = "completed"
    cancelled = "cancelled"

class POStatus(str, enum.Enum):
    draft = "draft"
    confirmed = "confirmed"
    partial = "partial"
    completed = "completed"
    cancelled = "cancelled"
