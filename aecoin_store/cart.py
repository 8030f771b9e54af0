from typing import List, Optional

from sqlalchemy.orm import Session

from aecoin_store.models import CartItem, Package
from aecoin_store.schemas import SnapshotLine


def get_cart_items(db: Session, user_id: str) -> List[CartItem]:
    return db.query(CartItem).filter_by(user_id=user_id).all()


def add_to_cart(db: Session, user_id: str, package_id: str, quantity: int = 1) -> Optional[CartItem]:
    if db.get(Package, package_id) is None:
        return None

    item = db.query(CartItem).filter_by(user_id=user_id, package_id=package_id).first()
    if item:
        item.quantity += quantity
    else:
        item = CartItem(user_id=user_id, package_id=package_id, quantity=quantity)
        db.add(item)
    db.commit()
    db.refresh(item)
    return item


def update_quantity(db: Session, user_id: str, item_id: str, quantity: int) -> Optional[CartItem]:
    item = db.query(CartItem).filter_by(id=item_id, user_id=user_id).first()
    if not item:
        return None
    item.quantity = quantity
    db.commit()
    db.refresh(item)
    return item


def remove_item(db: Session, user_id: str, item_id: str) -> bool:
    deleted = db.query(CartItem).filter_by(id=item_id, user_id=user_id).delete()
    db.commit()
    return deleted > 0


def clear_cart(db: Session, user_id: str) -> int:
    deleted = db.query(CartItem).filter_by(user_id=user_id).delete()
    db.commit()
    return deleted


def snapshot_cart(db: Session, user_id: str) -> List[SnapshotLine]:
    """Freezes the live cart with current catalog prices.

    Lines whose package has disappeared from the catalog are dropped.
    """
    rows = (
        db.query(CartItem, Package)
        .join(Package, Package.id == CartItem.package_id)
        .filter(CartItem.user_id == user_id)
        .order_by(Package.name)
        .all()
    )
    return [
        SnapshotLine(
            package_id=pkg.id,
            package_name=pkg.name,
            quantity=item.quantity,
            unit_price_at_checkout=pkg.price,
            currency_amount_per_unit=pkg.aecoin_amount,
        )
        for item, pkg in rows
        if item.quantity > 0
    ]
