from spinecheck.models.user import User
from spinecheck.models.assessment import Assessment
from spinecheck.models.check_in_event import CheckInEvent
from spinecheck.models.check_in_response import CheckInResponse
from spinecheck.models.check_in_alert import CheckInAlert
from spinecheck.models.message_template import MessageTemplate
from spinecheck.models.diagnosis_insert import DiagnosisInsert
from spinecheck.models.sms_opt_out import SmsOptOut
from spinecheck.models.revenue_event import RevenueEvent
from spinecheck.models.audit_log import AuditLog

__all__ = [
    "User",
    "Assessment",
    "CheckInEvent",
    "CheckInResponse",
    "CheckInAlert",
    "MessageTemplate",
    "DiagnosisInsert",
    "SmsOptOut",
    "RevenueEvent",
    "AuditLog",
]
