# SecurityX Services
from app.services.admission import AdmissionGate
from app.services.alert_system import AlertSystem
from app.services.auth import AuthGate
from app.services.origin_registry import OriginRegistry
from app.services.origin_validator import OriginValidator
from app.services.session_revocation import SessionRevocationStore

__all__ = [
    "AdmissionGate",
    "AlertSystem",
    "AuthGate",
    "OriginRegistry",
    "OriginValidator",
    "SessionRevocationStore",
]
