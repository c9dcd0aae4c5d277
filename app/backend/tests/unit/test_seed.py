from __future__ import annotations

from app.backend.src.db import session_scope
from app.backend.src.models import PresentationDocument
from app.backend.src.services.completeness import validate_order_ids
from app.backend.src.services.seed import seed_demo_billing


def test_seeded_order_passes_validation(store) -> None:  # type: ignore[no-untyped-def]
    with session_scope() as session:
        result = seed_demo_billing(session, store)
        order_id = result.order.id
        assert result.payer_created is True
        assert result.order_created is True

    with session_scope() as session:
        [report] = validate_order_ids(session, store, [order_id])

    assert report.is_complete is True
    assert report.missing_documents == []


def test_seeding_twice_reuses_records(store) -> None:  # type: ignore[no-untyped-def]
    with session_scope() as session:
        first = seed_demo_billing(session, store)
        first_ids = (first.payer.id, first.order.id)

    with session_scope() as session:
        second = seed_demo_billing(session, store)
        assert (second.payer.id, second.order.id) == first_ids
        assert second.payer_created is False
        assert second.order_created is False

    with session_scope() as session:
        assert session.query(PresentationDocument).count() == 3
