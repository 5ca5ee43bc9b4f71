"""Composite keys for finished-goods inventory documents."""

from __future__ import annotations

from dataclasses import dataclass

BULK_INVENTORY_COLLECTION = "finishedGoodsInventory"
PACKAGED_INVENTORY_COLLECTION = "finishedGoodsPackagedInventory"

_SEPARATOR = "_"


def _escape(part: str) -> str:
    # "%" first so escapes already present stay unambiguous.
    return part.replace("%", "%25").replace(_SEPARATOR, "%5F").replace("/", "%2F")


def _unescape(part: str) -> str:
    return part.replace("%2F", "/").replace("%5F", _SEPARATOR).replace("%25", "%")


@dataclass(frozen=True)
class InventoryKey:
    """
    Identity of one inventory document.

    Bulk stock is keyed by product and batch; packaged stock adds the variant.
    Components are escaped before joining, so ``("a_b", "1")`` and
    ``("a", "b_1")`` never share a document. Keys whose components contain no
    ``_``, ``/`` or ``%`` render exactly as the legacy ``productId_batchNumber``
    strings.
    """

    product_id: str
    batch_number: str
    variant_name: str | None = None

    def __post_init__(self) -> None:
        if not str(self.product_id or "").strip():
            raise ValueError("Inventory key requires a product id")
        if not str(self.batch_number or "").strip():
            raise ValueError("Inventory key requires a batch number")

    @property
    def is_packaged(self) -> bool:
        return self.variant_name is not None

    @property
    def collection(self) -> str:
        return PACKAGED_INVENTORY_COLLECTION if self.is_packaged else BULK_INVENTORY_COLLECTION

    @property
    def quantity_field(self) -> str:
        return "unitsInStock" if self.is_packaged else "quantity"

    def document_key(self) -> str:
        parts = [self.product_id]
        if self.is_packaged:
            parts.append(self.variant_name)
        parts.append(self.batch_number)
        return _SEPARATOR.join(_escape(str(part)) for part in parts)

    def ledger_path(self) -> str:
        return f"{self.collection}/{self.document_key()}"

    @classmethod
    def parse(cls, collection: str, document_key: str) -> "InventoryKey":
        parts = [_unescape(part) for part in document_key.split(_SEPARATOR)]
        if collection == PACKAGED_INVENTORY_COLLECTION:
            if len(parts) != 3:
                raise ValueError(f"Malformed packaged inventory key: {document_key}")
            return cls(product_id=parts[0], variant_name=parts[1], batch_number=parts[2])
        if collection == BULK_INVENTORY_COLLECTION:
            if len(parts) != 2:
                raise ValueError(f"Malformed bulk inventory key: {document_key}")
            return cls(product_id=parts[0], batch_number=parts[1])
        raise ValueError(f"Unknown inventory collection: {collection}")
