import re
from dataclasses import dataclass
from typing import Optional

from models import ExpenseCategory

_UPI_PATTERN = re.compile(r"^[a-zA-Z0-9._-]{2,256}@[a-zA-Z][a-zA-Z0-9.-]{1,63}$")


@dataclass(frozen=True)
class Merchant:
    name: str
    category: ExpenseCategory


# Known PSP handles; anything else is valid but unrecognised.
UPI_HANDLES: dict[str, Merchant] = {
    "oksbi": Merchant("SBI Bank", ExpenseCategory.bills),
    "ybl": Merchant("PhonePe", ExpenseCategory.other),
    "paytm": Merchant("Paytm", ExpenseCategory.shopping),
    "ibl": Merchant("ICICI Bank", ExpenseCategory.bills),
    "upi": Merchant("UPI Payment", ExpenseCategory.other),
    "apl": Merchant("Amazon Pay", ExpenseCategory.shopping),
    "okhdfcbank": Merchant("HDFC Bank", ExpenseCategory.bills),
    "axl": Merchant("Axis Bank", ExpenseCategory.bills),
}


@dataclass(frozen=True)
class UpiVerification:
    upi_id: str
    valid: bool
    handle: Optional[str]
    merchant: Optional[Merchant]

    def as_dict(self) -> dict[str, object]:
        return {
            "upiId": self.upi_id,
            "valid": self.valid,
            "handle": self.handle,
            "merchantName": self.merchant.name if self.merchant else None,
            "suggestedCategory": self.merchant.category.value if self.merchant else None,
        }


def verify_upi_id(upi_id: str) -> UpiVerification:
    value = upi_id.strip()
    if not _UPI_PATTERN.match(value):
        return UpiVerification(upi_id=value, valid=False, handle=None, merchant=None)
    handle = value.rsplit("@", 1)[1].lower()
    return UpiVerification(
        upi_id=value, valid=True, handle=handle, merchant=UPI_HANDLES.get(handle)
    )
