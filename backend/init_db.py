"""Initialize database with the demo test."""
import sys
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from app.database import SessionLocal, engine, Base
from app.services.mock_data import seed_demo_data
from app.services.storage import ABTestStorage


def init_database():
    """Create tables and seed the demo test with 30 days of analytics."""
    print("Creating database tables...")
    Base.metadata.create_all(bind=engine)

    db: Session = SessionLocal()

    try:
        test = seed_demo_data(ABTestStorage(db))
        if test is None:
            print("✓ Database already initialized")
            return

        print(f"✓ Created demo test: {test.name} (id={test.id})")
        for variant in test.variants:
            role = "control" if variant.sequence == 0 else "challenger"
            print(f"  - {variant.name} (id={variant.id}, {role})")

        print("\n" + "="*50)
        print("✓ Database initialized successfully!")
        print("="*50)
        print("\nTrigger an evaluation with curl:")
        print(f"  curl -X POST http://localhost:8000/api/tests/{test.id}/evaluate")
        print("\n" + "="*50)

    except SQLAlchemyError as e:
        print(f"✗ Error initializing database: {e}")
        db.rollback()
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    init_database()
