import logging
import os
from datetime import datetime, timezone

from drawengine.db.engine import get_sessionmaker, make_engine
from drawengine.db.unit_of_work import UnitOfWork
from drawengine.defaults import seed_default_categories
from drawengine.models import Base, RecurrenceCategory, User
from drawengine.models.entry import METHOD_PAYMENT, METHOD_REWARDED_ACTION
from drawengine.workflows import submit_entry


def main() -> None:
    """Reset the development database and fill it with sample entries."""
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
    engine = make_engine()

    # SQLite struggles with foreign-key dependencies during DROP, so
    # temporarily disable foreign key checks for a clean reset.
    with engine.connect() as conn:
        if engine.dialect.name == "sqlite":
            conn.exec_driver_sql("PRAGMA foreign_keys=OFF")
        Base.metadata.drop_all(bind=conn)
        if engine.dialect.name == "sqlite":
            conn.exec_driver_sql("PRAGMA foreign_keys=ON")
        conn.commit()

    Base.metadata.create_all(engine)
    Session = get_sessionmaker(engine)
    now = datetime.now(timezone.utc)

    with Session.begin() as session:
        seed_default_categories(session)
        users = [
            User(in_app_id=f"user_{i:02d}", nickname=name, created_at=now, updated_at=now)
            for i, name in enumerate(["Alice", "Bob", "Carol", "Dave", "Erin", "Frank"], 1)
        ]
        session.add_all(users)
        session.flush()
        user_ids = [u.id for u in users]
        daily_pi = RecurrenceCategory.get_by_internal_name(session, "daily_pi").id
        daily_ads = RecurrenceCategory.get_by_internal_name(session, "daily_ads").id

    uow = UnitOfWork(Session)
    for idx, user_id in enumerate(user_ids):
        submit_entry(
            uow,
            user_id=user_id,
            category_id=daily_pi,
            method=METHOD_PAYMENT,
            ticket_count=1 + idx % 3,
            payment_ref=f"dev-payment-{idx}",
            now=now,
        )
        submit_entry(
            uow,
            user_id=user_id,
            category_id=daily_ads,
            method=METHOD_REWARDED_ACTION,
            ticket_count=1,
            action_ref=f"dev-ad-{idx}",
            now=now,
        )

    print(f"Seeded {len(user_ids)} users with entries in daily_pi and daily_ads.")


if __name__ == "__main__":
    main()
