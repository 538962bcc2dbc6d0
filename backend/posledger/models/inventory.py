from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow

MOVEMENT_TYPES = ("IN", "OUT", "ADJUSTMENT")


class Product(db.Model):
    """
    Product master data.

    MULTI-TENANT: Products are scoped to organizations via org_id.

    STOCK DESIGN:
    current_stock is a denormalized running total of the product's
    non-reversed StockMovement rows. It is written ONLY by the stock ledger
    service, inside the same transaction as the movement that changes it.
    Never assign it from routes, imports, or fixtures.

    version_id backs optimistic locking so a stale in-memory copy can never
    overwrite a newer stock value.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("org_id", "sku", name="uq_products_org_sku"),
        db.Index("ix_products_org_name", "org_id", "name"),
        db.Index("ix_products_org_active", "org_id", "is_active", "is_deleted"),
        db.CheckConstraint("current_stock >= 0", name="ck_products_stock_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    sku = db.Column(db.String(64), nullable=True)
    barcode = db.Column(db.String(64), nullable=True, index=True)

    # Authoritative storage in cents
    cost_price_cents = db.Column(db.Integer, nullable=False, default=0)
    sale_price_cents = db.Column(db.Integer, nullable=False, default=0)

    min_stock = db.Column(db.Integer, nullable=False, default=0)
    current_stock = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_deleted = db.Column(db.Boolean, nullable=False, default=False)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    organization = db.relationship("Organization", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} stock={self.current_stock} org_id={self.org_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "name": self.name,
            "description": self.description,
            "sku": self.sku,
            "barcode": self.barcode,
            "cost_price_cents": self.cost_price_cents,
            "sale_price_cents": self.sale_price_cents,
            "min_stock": self.min_stock,
            "current_stock": self.current_stock,
            "is_active": self.is_active,
            "is_deleted": self.is_deleted,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    One inventory-affecting event (the ledger row).

    - type: IN, OUT, ADJUSTMENT
    - quantity: positive for IN/OUT (direction comes from type);
      signed delta for ADJUSTMENT
    - previous_stock/new_stock: product stock snapshot around the movement

    quantity and type are never updated. A correction is either a new
    movement or a reversal, which stamps reversed_at (soft delete) and
    undoes the stock effect. Reads must filter reversed_at IS NULL.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_org_product_created", "org_id", "product_id", "created_at"),
        db.Index("ix_stock_movements_org_type_created", "org_id", "type", "created_at"),
        db.Index("ix_stock_movements_reference", "reference"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=True, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)

    previous_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(255), nullable=True)
    reference = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    # Reversal (soft delete) audit trail
    reversed_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    reversed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    product = db.relationship("Product", backref=db.backref("stock_movements", lazy=True))
    store = db.relationship("Store")
    user = db.relationship("User", foreign_keys=[user_id])

    @property
    def is_reversed(self) -> bool:
        return self.reversed_at is not None

    @property
    def stock_delta(self) -> int:
        """Signed effect of this movement on Product.current_stock."""
        if self.type == "OUT":
            return -self.quantity
        return self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "store_id": self.store_id,
            "user_id": self.user_id,
            "type": self.type,
            "quantity": self.quantity,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "reason": self.reason,
            "reference": self.reference,
            "created_at": to_utc_z(self.created_at),
            "reversed_at": to_utc_z(self.reversed_at) if self.reversed_at else None,
            "reversed_by_user_id": self.reversed_by_user_id,
        }
