# services/constants.py
# Fixed codes and the baseline account map, referenced by engine and services.

from dataclasses import dataclass
from decimal import Decimal

from core.models import GLAccount, GLAccountMap

FINANCE_DNA_VERSION = "v2.0"
POSTING_TYPE_AUTO = "AUTO"
GL_JOURNAL = "GL_JOURNAL"
JOURNAL_SMART_CODE = "INV.FINANCE.TXN.JOURNAL.INVENTORY.v1"
RELATIONSHIP_POSTED_TO_FINANCE = "POSTED_TO_FINANCE"
RELATIONSHIP_SMART_CODE = "INV.FINANCE.REL.POSTED.v1"

# Legacy flag on the source document's own metadata.
LEGACY_POSTED_FLAG = "posted_to_finance"

BALANCE_TOLERANCE = Decimal("0.01")

BATCH_MAX_WORKERS = 4


@dataclass(frozen=True)
class AccountCodes:
    # -------------------
    # Assets
    # -------------------
    INVENTORY_ASSET = "1300"

    # -------------------
    # Liabilities
    # -------------------
    INVENTORY_CLEARING = "2150"   # goods received not invoiced

    # -------------------
    # Costs
    # -------------------
    COGS = "5000"
    INVENTORY_ADJUSTMENT = "5200"  # shrinkage / count variances


DEFAULT_ACCOUNT_MAP = GLAccountMap(
    inventory_asset=GLAccount(AccountCodes.INVENTORY_ASSET, "Inventory"),
    inventory_clearing=GLAccount(AccountCodes.INVENTORY_CLEARING, "Inventory Clearing"),
    cogs=GLAccount(AccountCodes.COGS, "Cost of Goods Sold"),
    inventory_adjustment=GLAccount(AccountCodes.INVENTORY_ADJUSTMENT, "Inventory Adjustments"),
)
