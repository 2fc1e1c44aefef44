"""
Add-on cache keyed by shopper session and Store API cart item key.

The Store API does not always echo add-ons back, so the add-ons chosen at
add-to-cart time (and the catalogue base price they were priced against) are
kept here and used when the response comes back bare.

Layout on disk (cart_addons.json):

    {"<session>": {"<item key>": {"addons": [...], "base_price": 12.5, "product_id": 42}}}
"""

import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel

from woostore.models import CartAddon

logger = logging.getLogger("storefront-cache")

CACHE_FILE = "cart_addons.json"
ANONYMOUS = "anonymous"


class CachedItem(BaseModel):
    addons: List[CartAddon] = []
    base_price: Optional[float] = None
    product_id: Optional[int] = None


class AddonCache:
    def __init__(self, data_dir: Path):
        self.path = Path(data_dir) / CACHE_FILE
        self.sessions: Dict[str, Dict[str, CachedItem]] = {}
        self._hydrated = False

    def hydrate(self):
        """Load entries from disk once"""
        if self._hydrated:
            return
        self._hydrated = True

        if not self.path.exists():
            return
        try:
            with open(self.path) as f:
                data = json.load(f)
            self.sessions = {
                session: {key: CachedItem.model_validate(item) for key, item in items.items()}
                for session, items in data.items()
            }
            logger.info(f"Loaded cached add-ons for {len(self.sessions)} sessions")
        except (OSError, ValueError, AttributeError) as e:
            logger.error(f"Ignoring unreadable add-on cache {self.path}: {e}")
            self.sessions = {}

    def persist(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            session: {key: item.model_dump(by_alias=True) for key, item in items.items()}
            for session, items in self.sessions.items()
            if items
        }
        tmp = self.path.with_suffix(".tmp")
        with open(tmp, "w") as f:
            json.dump(data, f, indent=2)
        tmp.replace(self.path)

    def _items(self, session: Optional[str], create: bool = False) -> Dict[str, CachedItem]:
        self.hydrate()
        if create:
            return self.sessions.setdefault(session or ANONYMOUS, {})
        return self.sessions.get(session or ANONYMOUS) or {}

    def set_item(
        self,
        session: Optional[str],
        item_key: str,
        addons: List[CartAddon],
        base_price: Optional[float] = None,
        product_id: Optional[int] = None
    ):
        self._items(session, create=True)[item_key] = CachedItem(
            addons=list(addons),
            base_price=base_price,
            product_id=product_id,
        )
        self.persist()

    def get_item(self, session: Optional[str], item_key: str) -> Optional[CachedItem]:
        return self._items(session).get(item_key)

    def get_addons(self, session: Optional[str], item_key: str) -> List[CartAddon]:
        cached = self.get_item(session, item_key)
        return list(cached.addons) if cached else []

    def items_for(self, session: Optional[str]) -> Dict[str, CachedItem]:
        return dict(self._items(session))

    def remove_item(self, session: Optional[str], item_key: str):
        items = self._items(session)
        if items.pop(item_key, None) is not None:
            if not items:
                self.sessions.pop(session or ANONYMOUS, None)
            self.persist()

    def clear(self, session: Optional[str]):
        self.hydrate()
        if self.sessions.pop(session or ANONYMOUS, None):
            self.persist()

    def sync_with_cart(self, session: Optional[str], item_keys: Iterable[str]) -> List[str]:
        """Drop entries for items no longer in the cart; returns the dropped keys"""
        items = self._items(session)
        keep = set(item_keys)
        orphans = [k for k in items if k not in keep]
        for key in orphans:
            del items[key]
        if not items:
            self.sessions.pop(session or ANONYMOUS, None)
        if orphans:
            logger.info(f"Dropped add-ons for {len(orphans)} items no longer in cart")
            self.persist()
        return orphans
