import logging

from gallery_admin.config import settings
from gallery_admin.core.capabilities import Role
from gallery_admin.crud import crud_feature_flag
from gallery_admin.db.session import SessionLocal
from gallery_admin.models.feature_flag import FlagCategory, FlagType
from gallery_admin.models.user import User

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

SAMPLE_FLAGS = [
    {
        "key": "new_gallery_viewer",
        "name": "New gallery viewer",
        "description": "Redesigned client gallery viewer",
        "flag_type": FlagType.PERCENTAGE.value,
        "category": FlagCategory.UI.value,
        "rollout_percentage": 10,
    },
    {
        "key": "turbo_upload",
        "name": "Turbo upload",
        "description": "Parallel chunked uploads for paid plans",
        "flag_type": FlagType.PLAN_BASED.value,
        "category": FlagCategory.GENERAL.value,
        "target_plans": ["pro", "studio"],
    },
    {
        "key": "stripe_checkout",
        "name": "Stripe checkout",
        "description": "Kill switch for the checkout flow",
        "flag_type": FlagType.BOOLEAN.value,
        "category": FlagCategory.BILLING.value,
        "is_killswitch": True,
    },
]


def init_db() -> None:
    db = SessionLocal()

    email = settings.FIRST_SUPER_ADMIN_EMAIL
    if email == "admin@example.com":
        logger.warning(
            "Using default super admin email 'admin@example.com'. "
            "Set FIRST_SUPER_ADMIN_EMAIL in .env for production."
        )

    # Check if super admin exists
    admin = db.query(User).filter(User.email == email).first()
    if not admin:
        logger.info("Creating super admin: %s", email)
        admin = User(
            external_id=settings.FIRST_SUPER_ADMIN_EXTERNAL_ID or email,
            email=email,
            role=Role.SUPER_ADMIN.value,
        )
        db.add(admin)
        db.commit()
        db.refresh(admin)

    # Sample flags are created disabled
    for values in SAMPLE_FLAGS:
        if crud_feature_flag.get_flag_by_key(db, key=values["key"]) is None:
            logger.info("Creating sample flag: %s", values["key"])
            crud_feature_flag.create_flag(db, values=values, created_by=admin.id)

    db.close()


if __name__ == "__main__":
    logger.info("Creating initial data")
    init_db()
    logger.info("Initial data created")
