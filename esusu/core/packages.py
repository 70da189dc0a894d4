from typing import NamedTuple, Optional

from esusu.models.cycle import ContributionMode


class Package(NamedTuple):
    label: str
    monthly_amount: int
    total_payout: int
    fine_amount: int


# Amounts are copied onto the participation when a member joins
PACKAGES = {
    ContributionMode.PACK_20K: Package("20K Package", 20000, 200000, 2000),
    ContributionMode.PACK_50K: Package("50K Package", 50000, 500000, 2500),
    ContributionMode.PACK_100K: Package("100K Package", 100000, 1000000, 5000),
}


def get_package(mode) -> Optional[Package]:
    """Look up a package by mode or mode string. Unknown modes return None."""
    try:
        mode = ContributionMode(mode)
    except ValueError:
        return None
    return PACKAGES.get(mode)


def list_packages() -> list:
    return [
        {
            "mode": mode.value,
            "label": package.label,
            "monthly_amount": package.monthly_amount,
            "total_payout": package.total_payout,
            "fine_amount": package.fine_amount,
        }
        for mode, package in PACKAGES.items()
    ]
