"""Initialize database with sample experiments."""
import sys
from datetime import date
from sqlalchemy.orm import Session
from exptrack.database import SessionLocal, engine, Base
from exptrack.models import Experiment, Version


SAMPLE_EXPERIMENTS = [
    {
        "name": "New Checkout Flow",
        "exp_parameter": "checkout_v2",
        "user_group": "premium_users",
        "numbers_list": ["123456", "789012", "345678", "901234"],
        "live_date": date(2024, 1, 15),
        "platforms": ["web", "mobile"],
        "context": (
            "## Overview\n"
            "Redesigned checkout flow with improved UX and conversion optimization.\n\n"
            "### Key Features\n"
            "- **Streamlined process**: Reduced steps from 5 to 3\n"
            "- **Payment options**: Added Apple Pay and Google Pay\n"
            "- **Progress indicator**: Visual progress bar"
        ),
        "is_active": True,
        "versions": [
            (date(2024, 1, 20), "### Version 1.1 Updates\n- Fixed payment processing for international cards\n- Improved mobile responsiveness"),
            (date(2024, 2, 5), "### Version 1.2 Updates\n- Added guest checkout option\n- Performance optimizations"),
        ],
    },
    {
        "name": "AI-Powered Recommendations",
        "exp_parameter": "ai_recommendations",
        "user_group": "all_users",
        "numbers_list": ["555123", "555456", "555789"],
        "live_date": date(2024, 2, 1),
        "platforms": ["web", "ios", "android"],
        "context": "## Overview\nProduct recommendations using collaborative filtering.\n\n- A/B testing with 50/50 split",
        "is_active": True,
        "versions": [
            (date(2024, 2, 10), "### Version 2.0 Updates\n- Upgraded model\n- Added \"Why this recommendation?\" explanation"),
        ],
    },
    {
        "name": "Dark Mode Theme",
        "exp_parameter": "dark_mode",
        "user_group": "beta_testers",
        "numbers_list": [],
        "live_date": date(2024, 1, 20),
        "platforms": ["web"],
        "context": "## Overview\nDark mode theme option for low-light conditions.",
        "is_active": True,
        "versions": [
            (date(2024, 1, 25), "### Version 1.1 Updates\n- Fixed contrast issues for accessibility"),
        ],
    },
    {
        "name": "Social Sharing Integration",
        "exp_parameter": "social_sharing",
        "user_group": "power_users",
        "numbers_list": ["999888", "999777", "999666"],
        "live_date": date(2023, 12, 10),
        "platforms": ["ios", "android"],
        "context": "## Overview\nOne-tap sharing to major social platforms.",
        "is_active": False,
        "versions": [],
    },
    {
        "name": "Voice Search Feature",
        "exp_parameter": "voice_search",
        "user_group": "early_adopters",
        "numbers_list": ["111222", "333444"],
        "live_date": date(2024, 2, 15),
        "platforms": ["ios", "android"],
        "context": "## Overview\nVoice-activated search using speech-to-text.",
        "is_active": True,
        "versions": [
            (date(2024, 2, 20), "### Version 1.1 Updates\n- Added German and Italian\n- Improved recognition accuracy"),
        ],
    },
]


def init_database():
    """Create tables and seed sample experiments into an empty database."""
    print("Creating database tables...")
    Base.metadata.create_all(bind=engine)

    db: Session = SessionLocal()

    try:
        if db.query(Experiment).first():
            print("✓ Database already initialized")
            return

        for sample in SAMPLE_EXPERIMENTS:
            fields = {k: v for k, v in sample.items() if k != "versions"}
            experiment = Experiment(**fields)
            experiment.versions = [
                Version(change_date=change_date, changes=changes)
                for change_date, changes in sample["versions"]
            ]
            db.add(experiment)
            print(f"✓ Created experiment: {experiment.exp_parameter}")

        db.commit()

        print("\n" + "="*50)
        print("✓ Database initialized successfully!")
        print(f"  Experiments: {db.query(Experiment).count()}")
        print(f"  Versions:    {db.query(Version).count()}")
        print("="*50)

    except Exception as e:
        print(f"✗ Error initializing database: {e}")
        db.rollback()
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    init_database()
