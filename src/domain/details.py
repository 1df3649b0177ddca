"""Structured loop details: the field registry and payload normalization.

Details are a free-form mapping of field key to scalar value stored with the
loop. The store accepts any key; the HTTP layer restricts writes to the keys
registered in DETAILS_GROUPS so the UI can always render what it saved.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from core.exceptions import ValidationError

DetailValue = Union[str, int, float, None]


@dataclass(frozen=True)
class DetailsGroup:
    """A titled section of detail fields, as (key, label) pairs."""

    title: str
    fields: Tuple[Tuple[str, str], ...]

    @property
    def keys(self) -> Tuple[str, ...]:
        return tuple(key for key, _ in self.fields)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "fields": [{"key": key, "label": label} for key, label in self.fields],
        }


DETAILS_GROUPS: Tuple[DetailsGroup, ...] = (
    DetailsGroup("Property Address", (
        ("country", "Country"),
        ("street_number", "Street Number"),
        ("street_name", "Street Name"),
        ("unit_number", "Unit Number"),
        ("state_prov", "State/Province"),
        ("city", "City"),
        ("zip_postal_code", "Zip/Postal Code"),
        ("county", "County"),
        ("mls_number", "MLS Number"),
        ("parcel_tax_id", "Parcel/Tax ID"),
    )),
    DetailsGroup("Financials", (
        ("purchase_sale_price", "Purchase/Sale Price"),
        ("sale_commission_total", "Sale Commission Total"),
        ("sale_commission_split_buy", "Sale Commission Split $ - Buy Side"),
        ("sale_commission_split_sell", "Sale Commission Split $ - Sell Side"),
        ("sale_commission_rate", "Sale Commission Rate"),
        ("earnest_money_amount", "Earnest Money Amount"),
        ("sale_commission_split_percent_buy", "Sale Commission Split % - Buy Side"),
        ("earnest_money_held_by", "Earnest Money Held By"),
        ("sale_commission_split_percent_sell", "Sale Commission Split % - Sell Side"),
        ("rent", "Rent"),
        ("rental_term", "Rental Term"),
        ("rent_commission_amount", "Rent Commission Amount"),
        ("security_deposit", "Security Deposit"),
        ("late_fee", "Late Fee"),
    )),
    DetailsGroup("Contract Dates", (
        ("contract_agreement_date", "Contract Agreement Date"),
        ("closing_date", "Closing Date"),
    )),
    DetailsGroup("Offer Dates", (
        ("inspection_date", "Inspection Date"),
        ("offer_date", "Offer Date"),
        ("offer_expiration_date", "Offer Expiration Date"),
        ("occupancy_date", "Occupancy Date"),
    )),
    DetailsGroup("Contract Info", (
        ("transaction_number", "Transaction Number"),
        ("class", "Class"),
        ("contract_type", "Type"),
    )),
    DetailsGroup("Referral", (
        ("referral_percent", "Referral %"),
        ("referral_source", "Referral Source"),
    )),
    DetailsGroup("Listing Information", (
        ("expiration_date", "Expiration Date"),
        ("listing_date", "Listing Date"),
        ("original_price", "Original Price"),
        ("current_price", "Current Price"),
        ("first_mortgage_balance", "1st Mortgage Balance"),
        ("second_mortgage_balance", "2nd Mortgage Balance"),
        ("other_liens", "Other Liens"),
        ("description_other_liens", "Description of Other Liens"),
        ("hoa", "Homeowner's Association"),
        ("hoa_dues", "Homeowner's Association Dues"),
        ("total_encumbrances", "Total Encumbrances"),
        ("property_includes", "Property Includes"),
        ("property_excludes", "Property Excludes"),
        ("remarks", "Remarks"),
    )),
    DetailsGroup("Geographic Description", (
        ("mls_area", "MLS Area"),
        ("legal_description", "Legal Description"),
        ("map_grid", "Map Grid"),
        ("subdivision", "Subdivision"),
        ("lot", "Lot"),
        ("deed_page", "Deed Page"),
        ("deed_book", "Deed Book"),
        ("section", "Section"),
        ("addition", "Addition"),
        ("block", "Block"),
    )),
    DetailsGroup("Property", (
        ("year_built", "Year Built"),
        ("bedrooms", "Bedrooms"),
        ("square_footage", "Square Footage"),
        ("school_district", "School District"),
        ("property_type", "Type"),
        ("bathrooms", "Bathrooms"),
        ("lot_size", "Lot Size"),
    )),
)

KNOWN_DETAIL_KEYS = frozenset(key for group in DETAILS_GROUPS for key in group.keys)


def normalize_details(raw: Any) -> Optional[Dict[str, DetailValue]]:
    """
    Coerce a details payload into a flat mapping of scalar values.

    Accepts a mapping or its JSON text. Blank text and None clear the details.

    Args:
        raw: Incoming details payload.

    Returns:
        A new dict with string keys and str/number/None values, or None.

    Raises:
        ValidationError: If the payload is not an object or holds nested values.
    """
    if raw is None:
        return None
    if isinstance(raw, str):
        if not raw.strip():
            return None
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValidationError(f"details is not valid JSON: {exc.msg}") from exc

    if not isinstance(raw, Mapping):
        raise ValidationError("details must be an object of field values")

    normalized: Dict[str, DetailValue] = {}
    for key, value in raw.items():
        if not isinstance(key, str) or not key:
            raise ValidationError("details keys must be non-empty strings")
        if isinstance(value, bool) or not isinstance(value, (str, int, float, type(None))):
            raise ValidationError(f"details.{key} must be text, a number, or null")
        normalized[key] = value
    return normalized


def unknown_detail_keys(details: Optional[Mapping[str, Any]]) -> List[str]:
    """Keys in ``details`` that no registered group renders."""
    if not details:
        return []
    return sorted(key for key in details if key not in KNOWN_DETAIL_KEYS)


def require_known_detail_keys(details: Optional[Mapping[str, Any]]) -> None:
    """Reject detail writes that use unregistered keys."""
    unknown = unknown_detail_keys(details)
    if unknown:
        raise ValidationError(
            f"Unknown details fields: {', '.join(unknown)}",
            details={"unknown_keys": unknown},
        )


__all__ = [
    "DetailsGroup",
    "DETAILS_GROUPS",
    "KNOWN_DETAIL_KEYS",
    "normalize_details",
    "unknown_detail_keys",
    "require_known_detail_keys",
]
