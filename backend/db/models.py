"""Import every model module so Base.metadata knows all tables."""

from db.account import Account, Store  # noqa: F401
from db.item import Category, Item  # noqa: F401
from db.users import User  # noqa: F401
from db.notification import Notification  # noqa: F401
from db.inventory.movement import Movement  # noqa: F401
from db.inventory.transfer import Transfer, TransferItem  # noqa: F401
from db.inventory.count import StockCount, StockEntry  # noqa: F401
