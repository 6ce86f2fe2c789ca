"""Setup endpoint for database initialization."""
from fastapi import APIRouter, HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.database import SessionLocal, engine, Base
from app.services.mock_data import seed_demo_data
from app.services.storage import ABTestStorage

router = APIRouter()


@router.post("/setup/init-db")
async def initialize_database():
    """
    Initialize database tables and seed the demo test.

    Safe to call repeatedly: seeding only happens on an empty database.
    """
    db: Session = SessionLocal()

    try:
        # Create all tables
        Base.metadata.create_all(bind=engine)

        test = seed_demo_data(ABTestStorage(db))
        if test is None:
            return {
                "status": "already_initialized",
                "message": "Database already has tests. Skipping demo data."
            }

        return {
            "status": "success",
            "message": "Database initialized successfully",
            "demo_test_id": test.id,
            "variants": [variant.id for variant in test.variants]
        }

    except SQLAlchemyError as e:
        db.rollback()
        raise HTTPException(
            status_code=500,
            detail=f"Database initialization failed: {str(e)}"
        )
    finally:
        db.close()
