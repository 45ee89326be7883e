"""
Firebase Admin SDK Service
Mirrors audit entries to Firestore so several server instances share one trail
"""

from pathlib import Path
from typing import Any, Dict, List, Optional
import logging

from .audit import AuditEntry

logger = logging.getLogger(__name__)

AUDIT_COLLECTION = 'audit_log'


class FirebaseService:
    def __init__(self, service_account_path: str = None, db=None):
        self.db = db
        self.app = None
        self.initialized = db is not None

        if db is None and service_account_path:
            self._initialize_firebase(service_account_path)

    def _initialize_firebase(self, service_account_path: str):
        """Initialize Firebase Admin SDK"""
        try:
            import firebase_admin
            from firebase_admin import credentials, firestore
        except ImportError:
            logger.warning("⚠️ firebase-admin package not installed. Firestore audit mirror disabled.")
            return

        path = Path(service_account_path)
        if not path.exists():
            logger.warning(f"Firebase service account file not found: {path}")
            return

        try:
            logger.info(f"🔥 Initializing Firebase with service account: {path}")
            if not firebase_admin._apps:
                cred = credentials.Certificate(str(path))
                self.app = firebase_admin.initialize_app(cred)
                logger.info("✅ Firebase Admin SDK initialized successfully")
            else:
                self.app = firebase_admin.get_app()
                logger.info("✅ Using existing Firebase Admin SDK instance")

            self.db = firestore.client()
            self.initialized = True
            logger.info("✅ Firestore client ready")
        except Exception as e:
            logger.error(f"❌ Failed to initialize Firebase: {e}")

    def is_available(self) -> bool:
        """Check if Firebase is available and initialized"""
        return self.initialized and self.db is not None

    def log_audit_entry(self, entry: AuditEntry) -> bool:
        """Write one audit entry to Firestore; usable as an AuditLog sink"""
        if not self.is_available():
            return False

        try:
            self.db.collection(AUDIT_COLLECTION).add(entry.to_dict())
            return True
        except Exception as e:
            logger.error(f"Failed to mirror audit entry: {e}")
            return False

    def get_audit_entries(self, limit: int = 100) -> List[Dict[str, Any]]:
        """Most recent mirrored entries across all instances, oldest first"""
        if not self.is_available():
            return []

        try:
            query = (self.db.collection(AUDIT_COLLECTION)
                     .order_by('timestamp', direction='DESCENDING')
                     .limit(limit))
            entries = []
            for doc in query.stream():
                entry = doc.to_dict()
                entry['id'] = doc.id
                entries.append(entry)
            entries.reverse()
            logger.info(f"✅ Retrieved {len(entries)} audit entries from Firebase")
            return entries
        except Exception as e:
            logger.error(f"❌ Error getting audit entries: {e}")
            return []


def attach_audit_mirror(audit_log, service_account_path: Optional[str]) -> Optional[FirebaseService]:
    """Mirror audit_log to Firestore when a service account is configured"""
    if not service_account_path:
        return None
    service = FirebaseService(service_account_path)
    if not service.is_available():
        logger.warning("🔄 Firebase not available, audit log stays instance-local")
        return None
    audit_log.add_sink(service.log_audit_entry)
    return service
