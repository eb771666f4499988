from app.models.catalog import Category, Collection, SignaturePiece
from app.models.menu_item import MenuItem

__all__ = [
    "Category",
    "Collection",
    "MenuItem",
    "SignaturePiece",
]
