from costledger.models.item import Item, PurchaseLine
from costledger.models.product import CompositionLink, Product
from costledger.models.inventory import InventoryRecord, StockMovement
from costledger.models.audit_log import AuditLog
