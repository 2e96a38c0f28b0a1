import pytest

from talenthive.domain.fees import calculate_fees
from talenthive.utils.config_loader import PlatformSettings


def test_default_fee_breakdown():
    fees = calculate_fees(1000, PlatformSettings())
    assert fees.amount == 1000
    assert fees.platform_commission == pytest.approx(100.0)
    assert fees.processing_fee == pytest.approx(29.0)
    assert fees.tax == 0
    assert fees.freelancer_amount == pytest.approx(871.0)
    assert fees.currency == "USD"


def test_commission_is_clamped_to_minimum_and_maximum():
    small = calculate_fees(10, PlatformSettings())
    assert small.platform_commission == pytest.approx(1.0)
    assert small.freelancer_amount == pytest.approx(8.71)

    capped = calculate_fees(1000, PlatformSettings(max_commission=50))
    assert capped.platform_commission == pytest.approx(50.0)


def test_tax_is_deducted_from_freelancer_share():
    fees = calculate_fees(200, PlatformSettings(tax_rate=5, payment_processing_fee=0))
    assert fees.tax == pytest.approx(10.0)
    assert fees.freelancer_amount == pytest.approx(170.0)
    assert fees.as_dict()["tax"] == pytest.approx(10.0)


def test_non_positive_amount_rejected():
    with pytest.raises(ValueError):
        calculate_fees(0, PlatformSettings())


@pytest.mark.parametrize("amount", [float("nan"), float("inf")])
def test_non_finite_amount_rejected(amount):
    with pytest.raises(ValueError):
        calculate_fees(amount, PlatformSettings())


def test_tiny_amount_leaves_nothing_for_the_freelancer():
    # The minimum commission swallows the whole payment
    assert calculate_fees(1.0, PlatformSettings()).freelancer_amount == 0.0
