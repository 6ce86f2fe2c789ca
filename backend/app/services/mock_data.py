"""Demo test and synthetic cumulative analytics."""
from datetime import datetime, timedelta
from typing import List, Optional
import random
import structlog

from app.models.test import ABTest
from app.schemas.analytics import AnalyticsPointCreate
from app.schemas.tests import TestCreate, VariantCreate
from app.services.storage import ABTestStorage

logger = structlog.get_logger()

SAMPLE_INTERVAL = timedelta(minutes=15)


def demo_test_request(now: Optional[datetime] = None) -> TestCreate:
    """The demo test shown on an empty installation."""
    now = now or datetime.utcnow()
    return TestCreate(
        name="Homepage Hero Video A/B Test",
        product_name="Summer Collection 2024",
        target_population=25000,
        start_time=now - timedelta(days=30),
        end_time=now + timedelta(days=14),
        status="running",
        autonomous_optimization=False,
        variants=[
            VariantCreate(
                name="Variant A - Lifestyle Focus",
                video_url="https://commondatastorage.googleapis.com/gtv-videos-bucket/sample/ForBiggerBlazes.mp4",
                thumbnail_url="https://images.unsplash.com/photo-1460925895917-afdab827c52f?w=800&auto=format&fit=crop&q=60",
                description="Showcases products in everyday lifestyle scenarios with ambient music and casual pacing"
            ),
            VariantCreate(
                name="Variant B - Product Detail",
                video_url="https://commondatastorage.googleapis.com/gtv-videos-bucket/sample/ForBiggerEscapes.mp4",
                thumbnail_url="https://images.unsplash.com/photo-1551288049-bebda4e38f71?w=800&auto=format&fit=crop&q=60",
                description="Close-up product shots with feature callouts and energetic background music"
            ),
            VariantCreate(
                name="Variant C - Customer Testimonial",
                video_url="https://commondatastorage.googleapis.com/gtv-videos-bucket/sample/ForBiggerFun.mp4",
                thumbnail_url="https://images.unsplash.com/photo-1505740420928-5e560c06d30e?w=800&auto=format&fit=crop&q=60",
                description="Real customer reviews and unboxing reactions with authentic social proof"
            ),
        ]
    )


def generate_mock_analytics(
    variant_ids: List[int],
    days_of_data: int = 30,
    now: Optional[datetime] = None,
    rng: Optional[random.Random] = None
) -> List[AnalyticsPointCreate]:
    """
    Generate cumulative snapshots every 15 minutes for each variant.

    Later variants get more traffic and a higher conversion rate, daytime
    hours (9-21) get 1.5x traffic, and every increment carries +/-20% noise.
    Counters only ever grow, matching what ingestion produces.
    """
    now = now or datetime.utcnow()
    rng = rng or random.Random()
    total_points = days_of_data * 24 * 4

    cumulatives = [
        {
            "views": 0,
            "conversions": 0,
            "interactions": 0,
            "growth_rate": 1 + index * 0.15,
            "conversion_rate": 0.025 + index * 0.008,
        }
        for index in range(len(variant_ids))
    ]

    def noise() -> float:
        return 1 + (rng.random() - 0.5) * 0.4

    points = []
    for i in range(total_points):
        timestamp = now - (total_points - i) * SAMPLE_INTERVAL
        progress = i / total_points
        day_multiplier = 1.5 if 9 <= timestamp.hour <= 21 else 0.5

        for index, variant_id in enumerate(variant_ids):
            cumulative = cumulatives[index]

            views_increment = int(3 * day_multiplier * noise() * cumulative["growth_rate"] * (0.8 + progress * 0.4))
            conversions_increment = 1 if rng.random() < cumulative["conversion_rate"] * day_multiplier else 0
            interactions_increment = int(views_increment * (0.08 + index * 0.02) * noise())

            cumulative["views"] += views_increment
            # Keep conversions <= views when traffic is very low early on
            cumulative["conversions"] = min(cumulative["conversions"] + conversions_increment, cumulative["views"])
            cumulative["interactions"] += interactions_increment

            points.append(AnalyticsPointCreate(
                variant_id=variant_id,
                timestamp=timestamp,
                views=cumulative["views"],
                conversions=cumulative["conversions"],
                interactions=cumulative["interactions"]
            ))

    return points


def seed_demo_data(storage: ABTestStorage) -> Optional[ABTest]:
    """
    Create the demo test with 30 days of analytics if no tests exist.

    Returns:
        The created test, or None if the database already had tests
    """
    if storage.list_tests():
        return None

    logger.info("seeding_demo_data")
    test = storage.create_test(demo_test_request(), is_mock=True)
    variant_ids = [variant.id for variant in test.variants]
    count = storage.create_analytics_batch(test.id, generate_mock_analytics(variant_ids))
    logger.info("demo_data_seeded", test_id=test.id, analytics_points=count)
    return test
