#!/usr/bin/env python3
"""
Seed Data Script for Feature Tracker

Creates a realistic "IDE vendor" scenario with:
- 1 Product (IntelliJ IDEA, prefix IDEA)
- 2 Releases (2026.1 under the 2026 umbrella release)
- 6 Features with owners, planning dates and dependencies
- Ten days of usage events from mobile, desktop, power and new users
- One rejected usage event in the error log, ready for reprocessing
- A RELEASED transition that notifies every stakeholder
- One email delivery failure for the admin diagnostics page

Every row goes through the regular services, so the seeded data obeys the
same rules as data entered through the API.

Run with: python seed_data.py
"""

import asyncio
import random
from datetime import timedelta

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from feature_tracker.core import Clock, FixedClock, session_scope, init_db
from feature_tracker.models import (
    DependencyType,
    EmailDeliveryFailure,
    ErrorLog,
    Feature,
    FeatureDependency,
    FeaturePlanningStatus,
    FeatureStatus,
    Notification,
    PlanningHistory,
    Product,
    Release,
    ReleaseStatus,
    UsageEvent,
    utc_now,
)
from feature_tracker.services import (
    CreateFeatureInput,
    CreateProductInput,
    CreateReleaseInput,
    DependencyInput,
    EmailDeliveryFailureService,
    FeatureDependencyService,
    FeatureService,
    InvalidUsageEventError,
    ProductService,
    ReleaseEngine,
    UpdateFeatureInput,
    UpdateReleaseInput,
    UsageEventInput,
    UsageEventService,
)

ADMIN = "alice"

USERS = {
    "bob": {"device": "desktop", "userType": "power"},
    "carol": {"device": "desktop", "userType": "power"},
    "dave": {"device": "mobile", "userType": "new"},
    "erin": {"device": "mobile", "userType": "new"},
    "frank": {"device": "desktop", "userType": "new"},
}

FEATURES = [
    # (title, assignee, status, planning status)
    ("Search Everywhere 2.0", "bob", FeatureStatus.RELEASED, FeaturePlanningStatus.DONE),
    ("AI Quick Fixes", "carol", FeatureStatus.RELEASED, FeaturePlanningStatus.DONE),
    ("Remote Dev Gateway", "dave", FeatureStatus.IN_PROGRESS, FeaturePlanningStatus.IN_PROGRESS),
    ("Kotlin K2 Mode", "bob", FeatureStatus.ON_HOLD, FeaturePlanningStatus.BLOCKED),
    ("New UI Themes", "erin", FeatureStatus.NEW, FeaturePlanningStatus.NOT_STARTED),
    ("Profiler Flame Graphs", None, FeatureStatus.NEW, FeaturePlanningStatus.NOT_STARTED),
]


async def seed_database(session: AsyncSession, clock: Clock) -> dict[str, int]:
    """Populate an empty database and return row counts per entity."""
    rng = random.Random(2026)
    start = clock.now()

    # =================================================================
    # CREATE PRODUCT
    # =================================================================
    print("\n📦 Creating product...")

    await ProductService(session, clock).create_product(
        CreateProductInput(
            code="intellij",
            prefix="IDEA",
            name="IntelliJ IDEA",
            description="The Java and Kotlin IDE",
        ),
        actor=ADMIN,
    )
    print("   ✓ IntelliJ IDEA (IDEA)")

    # =================================================================
    # CREATE RELEASES
    # =================================================================
    print("\n🚀 Creating releases...")

    releases = ReleaseEngine(session, clock)
    umbrella = await releases.create_release(
        CreateReleaseInput(product_code="intellij", code="2026", description="Year 2026"),
        actor=ADMIN,
    )
    spring = await releases.create_release(
        CreateReleaseInput(
            product_code="intellij",
            code="2026.1",
            description="Spring release",
            parent_code=umbrella.code,
        ),
        actor=ADMIN,
    )
    for status in (ReleaseStatus.PLANNED, ReleaseStatus.IN_PROGRESS):
        await releases.update_release(
            spring.code,
            UpdateReleaseInput(
                description=spring.description,
                status=status,
                parent_code=umbrella.code,
            ),
            actor=ADMIN,
        )
    print(f"   ✓ {umbrella.code} [DRAFT]")
    print(f"   ✓ {spring.code} [IN_PROGRESS, child of {umbrella.code}]")

    # =================================================================
    # CREATE FEATURES
    # =================================================================
    print("\n🧩 Creating features...")

    features = FeatureService(session, clock)
    codes = []
    for index, (title, assignee, status, planning_status) in enumerate(FEATURES):
        feature = await features.create_feature(
            CreateFeatureInput(
                product_code="intellij",
                title=title,
                release_code=spring.code,
                assigned_to=assignee,
            ),
            actor=ADMIN,
        )
        if status != FeatureStatus.NEW:
            await features.update_feature(
                feature.code,
                UpdateFeatureInput(
                    title=title,
                    status=status,
                    release_code=spring.code,
                    assigned_to=assignee,
                ),
                actor=ADMIN,
            )
        await features.update_planning(
            feature.code,
            {
                "planning_status": planning_status,
                "feature_owner": assignee,
                "planned_completion_date": start + timedelta(days=7 * (index + 1)),
                "actual_completion_date": (
                    start if status == FeatureStatus.RELEASED else None
                ),
                "blockage_reason": (
                    "Waiting on compiler plugin API" if status == FeatureStatus.ON_HOLD else None
                ),
            },
            actor=ADMIN,
        )
        codes.append(feature.code)
        print(f"   ✓ {feature.code}: {title} [{status.value}]")

    dependencies = FeatureDependencyService(session)
    await dependencies.add_dependency(
        codes[1], DependencyInput(codes[0], DependencyType.SOFT, notes="Shares the index")
    )
    await dependencies.add_dependency(
        codes[3], DependencyInput(codes[2], DependencyType.HARD)
    )
    print("   ✓ 2 dependencies")

    # =================================================================
    # RECORD USAGE
    # =================================================================
    print("\n📈 Recording usage events...")

    usage_clock = FixedClock(start - timedelta(days=10))
    usage = UsageEventService(session, usage_clock)
    for _ in range(10 * 24):
        for user, context in USERS.items():
            if rng.random() < 0.3:
                await usage.ingest(
                    user,
                    UsageEventInput(
                        action_type="FEATURE_VIEWED",
                        feature_code=rng.choice(codes[:3]),
                        product_code="intellij",
                        release_code=spring.code,
                        context=dict(context),
                    ),
                )
        usage_clock.advance(hours=1)

    try:
        await usage.ingest("dave", UsageEventInput(action_type="FEATURE_LIKED", feature_code=codes[0]))
    except InvalidUsageEventError as e:
        print(f"   ✓ Rejected event kept in error log (entry {e.error_log_id})")

    # =================================================================
    # RELEASE AND NOTIFY
    # =================================================================
    print("\n🔔 Releasing 2026.1...")

    result = await releases.update_release(
        spring.code,
        UpdateReleaseInput(
            description=spring.description,
            status=ReleaseStatus.RELEASED,
            parent_code=umbrella.code,
        ),
        actor=ADMIN,
    )
    print(f"   ✓ Notified {len(result.notifications)} stakeholders")

    await EmailDeliveryFailureService(session, clock).record_failure(
        "erin@example.com",
        "RELEASE_UPDATED",
        "550 5.1.1 Mailbox unavailable",
        notification_id=result.notifications[0].id,
    )
    print("   ✓ 1 email delivery failure")

    await session.flush()
    return {
        "products": 1,
        "releases": 2,
        "features": len(codes),
        "dependencies": 2,
        "release_notifications": len(result.notifications),
    }


async def clear_database(session: AsyncSession) -> None:
    """Clear all data from the database (in correct order for FK constraints)."""
    for model in (
        PlanningHistory,
        EmailDeliveryFailure,
        Notification,
        ErrorLog,
        UsageEvent,
        FeatureDependency,
        Feature,
        Release,
        Product,
    ):
        await session.execute(delete(model))
    print("   ✓ Cleared existing data")


async def main() -> None:
    await init_db()
    async with session_scope() as session:
        print("🌱 Starting database seed...")
        await clear_database(session)
        counts = await seed_database(session, FixedClock(utc_now()))

    print("\n" + "=" * 60)
    print("✅ DATABASE SEEDED SUCCESSFULLY!")
    print("=" * 60)
    for name, count in counts.items():
        print(f"   {name}: {count}")


if __name__ == "__main__":
    asyncio.run(main())
