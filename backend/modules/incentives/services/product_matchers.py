# backend/modules/incentives/services/product_matchers.py

"""SKU selectors for product incentive lines."""

from abc import ABC, abstractmethod
from typing import Iterable, List

from ..schemas.rule_schemas import ProductLine


class ProductMatcher(ABC):
    @abstractmethod
    def matches(self, sku: str) -> bool:
        pass

    def select(self, skus: Iterable[str]) -> List[str]:
        return [sku for sku in skus if self.matches(sku)]


class SkuMatcher(ProductMatcher):
    """Exact SKU code"""

    def __init__(self, sku: str):
        self.sku = sku

    def matches(self, sku: str) -> bool:
        return sku == self.sku

    def __repr__(self):
        return f"SkuMatcher({self.sku!r})"


class BrandMatcher(ProductMatcher):
    """Brand code appearing anywhere in the SKU"""

    def __init__(self, brand: str):
        self.brand = brand

    def matches(self, sku: str) -> bool:
        return self.brand in sku

    def __repr__(self):
        return f"BrandMatcher({self.brand!r})"


class CategoryMatcher(ProductMatcher):
    """Category code appearing anywhere in the SKU"""

    def __init__(self, category: str):
        self.category = category

    def matches(self, sku: str) -> bool:
        return self.category in sku

    def __repr__(self):
        return f"CategoryMatcher({self.category!r})"


class AllOfMatcher(ProductMatcher):
    def __init__(self, matchers: List[ProductMatcher]):
        if not matchers:
            raise ValueError("AllOfMatcher needs at least one matcher")
        self.matchers = matchers

    def matches(self, sku: str) -> bool:
        return all(matcher.matches(sku) for matcher in self.matchers)

    def __repr__(self):
        return f"AllOfMatcher({self.matchers!r})"


def build_matcher(line: ProductLine) -> ProductMatcher:
    """Combine every selector set on the line; all of them must match."""
    matchers: List[ProductMatcher] = []
    if line.sku:
        matchers.append(SkuMatcher(line.sku))
    if line.brand:
        matchers.append(BrandMatcher(line.brand))
    if line.category:
        matchers.append(CategoryMatcher(line.category))

    if len(matchers) == 1:
        return matchers[0]
    return AllOfMatcher(matchers)
