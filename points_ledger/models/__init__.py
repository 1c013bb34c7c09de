# Models package — import all models here so Alembic can discover them.

from points_ledger.models.purchase_event import PurchaseEvent  # noqa: F401
from points_ledger.models.user_points import UserPoints  # noqa: F401
