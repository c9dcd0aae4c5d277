"""Seed the development database with a demo payer and a billable order."""

from app.backend.src.db import create_tables, session_scope
from app.backend.src.services.s3 import get_object_store
from app.backend.src.services.seed import seed_demo_billing


def main() -> None:
    """Create tables (if needed) and ensure a fully documented order exists."""

    create_tables()

    with session_scope() as session:
        result = seed_demo_billing(session, get_object_store())
        session.flush()

        payer_status = "created" if result.payer_created else "unchanged"
        order_status = "created" if result.order_created else "unchanged"
        print("Development data ready!")
        print(f"Payer ({payer_status}): {result.payer.name} [id={result.payer.id}]")
        print(f"Patient: {result.patient.full_name} [id={result.patient.id}]")
        print(
            f"Order ({order_status}): id={result.order.id}, "
            f"completed_at={result.order.completed_at:%Y-%m-%d}"
        )


if __name__ == "__main__":
    main()
