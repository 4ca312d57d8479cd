"""
Credit price list.

Packages are static reference data. lookup_credits() maps a paid
amount back to credits: an exact package price wins (bonus
included), anything else is converted at the flat unit price.
"""

from payment_reconciliation.config import get_settings
from payment_reconciliation.schemas.payment import BankInfo, CreditPackage


CREDIT_PACKAGES: tuple[CreditPackage, ...] = (
    CreditPackage(id="pkg0", credits=10, price=10_000, label="10 Credits"),
    CreditPackage(id="pkg1", credits=100, price=100_000, label="100 Credits"),
    CreditPackage(
        id="pkg2", credits=210, price=200_000, label="210 Credits", bonus="+10%",
    ),
    CreditPackage(
        id="pkg3", credits=550, price=500_000, label="550 Credits",
        bonus="+10%", popular=True,
    ),
    CreditPackage(
        id="pkg4", credits=1_200, price=1_000_000, label="1.200 Credits",
        bonus="+20%",
    ),
)


def get_package(package_id: str) -> CreditPackage | None:
    for package in CREDIT_PACKAGES:
        if package.id == package_id:
            return package
    return None


def lookup_credits(amount: int) -> int:
    """Credits owed for a transfer of `amount`."""
    for package in CREDIT_PACKAGES:
        if package.price == amount:
            return package.credits
    return amount // get_settings().CREDIT_UNIT_PRICE


def get_bank_info() -> BankInfo:
    settings = get_settings()
    return BankInfo(
        bank_id=settings.BANK_ID,
        bank_name=settings.BANK_NAME,
        account_number=settings.BANK_ACCOUNT_NUMBER,
        account_holder=settings.BANK_ACCOUNT_HOLDER,
    )


def build_qr_code_url(amount: int, transfer_code: str) -> str:
    """VietQR image with the amount and memo pre-filled."""
    bank = get_bank_info()
    return (
        f"https://img.vietqr.io/image/{bank.bank_id}-{bank.account_number}"
        f"-compact2.png?amount={amount}&addInfo={transfer_code}"
    )
