import logging
import math

from buteco.auth import Action, AuthGate
from buteco.config import MENU_CATEGORIES
from buteco.errors import ValidationError
from buteco.models import MENU_ITEMS, MenuItem, money
from buteco.store.base import EntityStore

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = {"name", "price", "category", "description", "available"}


def _clean_price(price) -> float:
    try:
        p = money(price)
    except (TypeError, ValueError):
        raise ValidationError(f"invalid price {price!r}") from None
    if not math.isfinite(p) or p < 0:
        raise ValidationError("price must be a finite, non-negative amount")
    return p


class MenuCatalog:
    """menu items; reads are open, mutations are admin-only"""

    categories = MENU_CATEGORIES

    def __init__(self, store: EntityStore, auth: AuthGate):
        self.store = store
        self.auth = auth

    def list_items(self) -> list[MenuItem]:
        return [MenuItem.from_record(r) for r in self.store.list(MENU_ITEMS)]

    def list_available(self) -> list[MenuItem]:
        items = [MenuItem.from_record(r) for r in self.store.list(MENU_ITEMS, {"available": True})]
        return sorted(items, key=lambda i: (i.category, i.name))

    def list_by_category(self, category: str) -> list[MenuItem]:
        items = [MenuItem.from_record(r) for r in self.store.list(MENU_ITEMS, {"category": category})]
        return sorted(items, key=lambda i: i.name)

    def get_item(self, item_id: str) -> MenuItem:
        return MenuItem.from_record(self.store.get(MENU_ITEMS, item_id))

    def add_item(self, name: str, price, category: str = "Outros", description: str = "",
                 available: bool = True) -> MenuItem:
        self.auth.authorize(Action.MANAGE_MENU)
        name = (name or "").strip()
        if not name:
            raise ValidationError("item name is required")
        iid = self.store.create(MENU_ITEMS, {
            "name": name,
            "price": _clean_price(price),
            "category": (category or "").strip(),
            "description": (description or "").strip(),
            "available": bool(available),
        })
        logger.info("menu item %s (%s) added", iid, name)
        return self.get_item(iid)

    def update_item(self, item_id: str, **changes) -> MenuItem:
        self.auth.authorize(Action.MANAGE_MENU)
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"cannot update {', '.join(sorted(unknown))}")
        item = self.get_item(item_id)
        if "name" in changes:
            changes["name"] = (changes["name"] or "").strip()
            if not changes["name"]:
                raise ValidationError("item name is required")
        if "price" in changes:
            changes["price"] = _clean_price(changes["price"])
        if "available" in changes:
            changes["available"] = bool(changes["available"])
        if changes:
            self.store.update(MENU_ITEMS, item.id, changes)
            logger.info("menu item %s updated (%s)", item.id, ", ".join(sorted(changes)))
        return self.get_item(item.id)

    def delete_item(self, item_id: str):
        self.auth.authorize(Action.MANAGE_MENU)
        item = self.get_item(item_id)
        self.store.delete(MENU_ITEMS, item.id)
        logger.info("menu item %s (%s) deleted", item.id, item.name)

    def toggle_availability(self, item_id: str) -> MenuItem:
        self.auth.authorize(Action.MANAGE_MENU)
        item = self.get_item(item_id)
        self.store.update(MENU_ITEMS, item.id, {"available": not item.available})
        return self.get_item(item.id)
