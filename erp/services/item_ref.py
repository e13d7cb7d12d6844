from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar

from erp.errors import ValidationError


@dataclass(frozen=True)
class ProductRef:
    id: int
    kind: ClassVar[str] = 'PRODUCT'

    @property
    def product_id(self) -> int | None:
        return self.id

    @property
    def material_id(self) -> int | None:
        return None

    @property
    def label(self) -> str:
        return f'product #{self.id}'


@dataclass(frozen=True)
class MaterialRef:
    id: int
    kind: ClassVar[str] = 'MATERIAL'

    @property
    def product_id(self) -> int | None:
        return None

    @property
    def material_id(self) -> int | None:
        return self.id

    @property
    def label(self) -> str:
        return f'material #{self.id}'


ItemRef = ProductRef | MaterialRef


def item_ref_from(product_id: int | None, material_id: int | None) -> ItemRef:
    """Build an item reference from a pair of nullable ids where exactly one must be set."""
    if product_id and material_id:
        raise ValidationError('A line must reference a product or a material, not both')
    if product_id:
        return ProductRef(int(product_id))
    if material_id:
        return MaterialRef(int(material_id))
    raise ValidationError('A line must reference a product or a material')
