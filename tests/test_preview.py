from decimal import Decimal

from core.gl_builder import build_gl_lines
from core.models import GLAccount, GLAccountMap
from core.preview import preview
from services.constants import DEFAULT_ACCOUNT_MAP
from tests.helpers import make_movement, line


def test_preview_matches_builder_for_single_line_receipt():
    p = preview("RECEIPT", Decimal("10"), Decimal("25"), "AED")
    txn = make_movement(movement_type="RECEIPT", lines=[line(10, 25, product_id=None, location_id=None)])
    built = build_gl_lines(txn, DEFAULT_ACCOUNT_MAP)
    assert p is not None
    assert p.lines == built.lines
    assert p.balanced is True
    assert p.total_dr == p.total_cr == Decimal("250.00")


def test_preview_matches_builder_for_adjustment_loss_with_dimensions():
    p = preview("ADJUSTMENT", Decimal("-5"), Decimal("20"), "AED", product_id="SKU-9", location_id="L1")
    txn = make_movement(movement_type="ADJUSTMENT", lines=[line(-5, 20, product_id="SKU-9", location_id="L1")])
    assert p.lines == build_gl_lines(txn, DEFAULT_ACCOUNT_MAP).lines


def test_preview_uses_given_account_map():
    custom = GLAccountMap(
        inventory_asset=GLAccount("A", "Asset"),
        inventory_clearing=GLAccount("B", "Clearing"),
        cogs=GLAccount("C", "COGS"),
        inventory_adjustment=GLAccount("D", "Adj"),
    )
    p = preview("ISSUE", Decimal("1"), Decimal("3"), "AED", custom)
    assert [l.account_code for l in p.lines] == ["C", "A"]


def test_preview_omits_unknown_movement_type():
    assert preview("TRANSFER", Decimal("1"), Decimal("1"), "AED") is None
    assert preview(None, Decimal("1"), Decimal("1"), "AED") is None


def test_preview_omits_zero_adjustment():
    assert preview("ADJUSTMENT", Decimal("0"), Decimal("5"), "AED") is None
