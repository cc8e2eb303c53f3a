"""Static token package catalog and currency unit helpers."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional

from services.payments.types import InvalidPackageError


AMOUNT_TOLERANCE = Decimal("0.01")
MINOR_UNITS_PER_MAJOR = 100


@dataclass(frozen=True)
class TokenPackage:
    id: str
    tokens: int
    price: Decimal
    currency: str
    description: str

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["price"] = str(self.price)
        payload["amount_minor"] = to_minor_units(self.price)
        return payload


TOKEN_PACKAGES: tuple = (
    TokenPackage(id="basic", tokens=10000, price=Decimal("499"), currency="INR", description="Basic Package"),
    TokenPackage(id="standard", tokens=25000, price=Decimal("999"), currency="INR", description="Standard Package"),
    TokenPackage(id="premium", tokens=50000, price=Decimal("1799"), currency="INR", description="Premium Package"),
)

_PACKAGES_BY_ID: Dict[str, TokenPackage] = {package.id: package for package in TOKEN_PACKAGES}


def get_package(package_id: Optional[str]) -> Optional[TokenPackage]:
    """Return the package for an id, or None when the id is unknown."""
    if not isinstance(package_id, str):
        return None
    return _PACKAGES_BY_ID.get(package_id)


def require_package(package_id: Optional[str]) -> TokenPackage:
    """Return the package for an id or raise InvalidPackageError."""
    package = get_package(package_id)
    if package is None:
        raise InvalidPackageError(f"Unknown token package: {package_id!r}")
    return package


def list_packages() -> List[TokenPackage]:
    return list(TOKEN_PACKAGES)


def to_minor_units(amount: Decimal) -> int:
    """Convert a major-unit amount (rupees) to gateway minor units (paise)."""
    scaled = (Decimal(amount) * MINOR_UNITS_PER_MAJOR).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(scaled)


def from_minor_units(amount: Any) -> Decimal:
    """Convert gateway minor units to a major-unit Decimal."""
    return (Decimal(int(amount)) / MINOR_UNITS_PER_MAJOR).quantize(Decimal("0.01"))


def amounts_match(left: Any, right: Any) -> bool:
    """Compare two major-unit amounts within the currency tolerance."""
    return abs(Decimal(str(left)) - Decimal(str(right))) <= AMOUNT_TOLERANCE
