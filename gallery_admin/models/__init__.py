from gallery_admin.db.base_class import Base
from gallery_admin.models.user import User
from gallery_admin.models.feature_flag import FeatureFlag, FeatureFlagHistory
from gallery_admin.models.audit import AdminAuditLog
