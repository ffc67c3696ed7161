"""Sequential code allocation."""
from decimal import Decimal

import pytest

from app.core.clock import business_now
from app.services.code_sequence_service import CodeSequenceService, format_code


def test_format_code_pads_suffix():
    assert format_code("ENT", "2024", 7, 3) == "ENT-2024-007"
    assert format_code("GAS", None, 42, 4) == "GAS-0042"


async def test_first_code_in_scope_starts_at_one(db):
    service = CodeSequenceService(db)

    assert await service.next_code("ENT", "2031") == "ENT-2031-001"
    assert await service.next_code("ENT", "2031") == "ENT-2031-002"
    # Another scope has its own counter
    assert await service.next_code("ENT", "2032") == "ENT-2032-001"


async def test_next_code_continues_after_highest_stored_code(db, make_carrier, make_sale, schedule_delivery):
    carrier = await make_carrier()
    sale = await make_sale([("P-1", 2, Decimal("10.00"))])
    first = await schedule_delivery(sale, carrier, [("P-1", 1, [])])
    second = await schedule_delivery(sale, carrier, [("P-1", 1, [])])

    # Codes written outside the counter, e.g. by an import
    first.code = "ENT-2024-001"
    second.code = "ENT-2024-007"
    await db.commit()

    service = CodeSequenceService(db)
    assert await service.preview_next_code("ENT", "2024") == "ENT-2024-008"
    assert await service.next_code("ENT", "2024") == "ENT-2024-008"


async def test_scan_ignores_codes_not_matching_pattern(db, make_carrier, make_sale, schedule_delivery):
    carrier = await make_carrier()
    sale = await make_sale([("P-1", 1, Decimal("10.00"))])
    delivery = await schedule_delivery(sale, carrier, [("P-1", 1, [])])
    delivery.code = "ENT-2024-00X"
    await db.commit()

    assert await CodeSequenceService(db).scan_max_suffix("ENT", "2024") == 0


async def test_preview_does_not_consume(db):
    service = CodeSequenceService(db)
    preview = await service.preview_next_code("GAS")

    assert preview == "GAS-0001"
    assert await service.preview_next_code("GAS") == preview
    assert await service.next_code("GAS") == preview


async def test_scheduled_delivery_code_uses_business_year(make_carrier, make_sale, schedule_delivery):
    carrier = await make_carrier()
    sale = await make_sale()
    delivery = await schedule_delivery(sale, carrier, [("P-100", 1, [])])

    assert delivery.code == f"ENT-{business_now().year}-001"
    assert carrier.code == "TR-001"


async def test_unknown_prefix_rejected(db):
    with pytest.raises(ValueError):
        await CodeSequenceService(db).next_code("XYZ")
