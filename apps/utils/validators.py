import re
from rest_framework import serializers

from apps.utils.exceptions import InvalidAddressError
from apps.utils.utils import dict_clean

ADDRESS_REQUIRED_FIELDS = ("full_name", "street", "city", "state", "zip_code")
ADDRESS_OPTIONAL_FIELDS = ("country", "phone")
DEFAULT_COUNTRY = "India"


def validate_phone(value):
    pattern = r"^\+?\d{10,15}$"
    if not re.match(pattern, str(value)):
        raise serializers.ValidationError("Invalid phone number format.")
    return value


def validate_address(data, label="shipping"):
    """
    Normalizes an address payload into the snapshot stored on the order.
    Raises InvalidAddressError naming every missing field.
    """
    if not isinstance(data, dict):
        raise InvalidAddressError(
            f"{label.capitalize()} address is required.",
            details={"address": label, "missing": list(ADDRESS_REQUIRED_FIELDS)},
        )

    cleaned = {
        field: str(data.get(field) or "").strip()
        for field in ADDRESS_REQUIRED_FIELDS + ADDRESS_OPTIONAL_FIELDS
    }

    missing = [f for f in ADDRESS_REQUIRED_FIELDS if not cleaned[f]]
    if missing:
        raise InvalidAddressError(
            f"{label.capitalize()} address is missing: {', '.join(missing)}.",
            details={"address": label, "missing": missing},
        )

    if cleaned["phone"]:
        try:
            validate_phone(cleaned["phone"])
        except serializers.ValidationError:
            raise InvalidAddressError(
                f"{label.capitalize()} address has an invalid phone number.",
                details={"address": label, "invalid": ["phone"]},
            )

    cleaned["country"] = cleaned["country"] or DEFAULT_COUNTRY
    return dict_clean(cleaned)
