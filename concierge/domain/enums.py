"""Domain enumerations."""

import enum


class BookingStatus(str, enum.Enum):
    PENDING_PAYMENT = "PENDING_PAYMENT"
    CONFIRMED = "CONFIRMED"
    JOCKEY_ASSIGNED = "JOCKEY_ASSIGNED"
    PICKED_UP = "PICKED_UP"
    AT_WORKSHOP = "AT_WORKSHOP"
    IN_SERVICE = "IN_SERVICE"
    READY_FOR_RETURN = "READY_FOR_RETURN"
    RETURN_ASSIGNED = "RETURN_ASSIGNED"
    RETURNED = "RETURNED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class BookingAction(str, enum.Enum):
    CONFIRM_PAYMENT = "CONFIRM_PAYMENT"
    ASSIGN_PICKUP = "ASSIGN_PICKUP"
    COMPLETE_PICKUP = "COMPLETE_PICKUP"
    ARRIVE_AT_WORKSHOP = "ARRIVE_AT_WORKSHOP"
    START_SERVICE = "START_SERVICE"
    FINISH_SERVICE = "FINISH_SERVICE"
    ASSIGN_RETURN = "ASSIGN_RETURN"
    COMPLETE_RETURN = "COMPLETE_RETURN"
    CLOSE = "CLOSE"
    CANCEL = "CANCEL"


class ActorRole(str, enum.Enum):
    CUSTOMER = "customer"
    JOCKEY = "jockey"
    WORKSHOP = "workshop"
    SYSTEM = "system"
    ADMIN = "admin"


class UserRole(str, enum.Enum):
    CUSTOMER = "customer"
    JOCKEY = "jockey"
    WORKSHOP = "workshop"
    ADMIN = "admin"


class RetentionState(str, enum.Enum):
    ACTIVE = "ACTIVE"
    ANONYMIZED = "ANONYMIZED"


class AssignmentKind(str, enum.Enum):
    PICKUP = "PICKUP"
    RETURN = "RETURN"


class AssignmentStatus(str, enum.Enum):
    ASSIGNED = "ASSIGNED"
    EN_ROUTE = "EN_ROUTE"
    AT_LOCATION = "AT_LOCATION"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


OPEN_ASSIGNMENT_STATUSES = frozenset(
    {AssignmentStatus.ASSIGNED, AssignmentStatus.EN_ROUTE, AssignmentStatus.AT_LOCATION}
)


class ExtensionStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DECLINED = "DECLINED"


class ExtensionPaymentStatus(str, enum.Enum):
    NONE = "NONE"
    AUTHORIZED = "AUTHORIZED"
    CAPTURED = "CAPTURED"
    CAPTURE_FAILED = "CAPTURE_FAILED"
    ESCALATED = "ESCALATED"  # handed to manual follow-up


class ExtensionDecision(str, enum.Enum):
    APPROVE = "approve"
    DECLINE = "decline"


class ServiceKind(str, enum.Enum):
    INSPECTION = "INSPECTION"
    OIL_SERVICE = "OIL_SERVICE"
    BRAKE_SERVICE = "BRAKE_SERVICE"
    BRAKE_SERVICE_REAR = "BRAKE_SERVICE_REAR"
    TUV = "TUV"
    CLIMATE_SERVICE = "CLIMATE_SERVICE"


class PriceSource(str, enum.Enum):
    EXACT = "exact"
    FALLBACK_BRAND = "fallback_brand"
    FALLBACK_DEFAULT = "fallback_default"


class MileageTier(str, enum.Enum):
    TIER_30K = "30k"
    TIER_60K = "60k"
    TIER_90K = "90k"
    TIER_120K = "120k+"


class NotificationType(str, enum.Enum):
    BOOKING_CONFIRMED = "BOOKING_CONFIRMED"
    STATUS_UPDATE = "STATUS_UPDATE"
    JOCKEY_ASSIGNED = "JOCKEY_ASSIGNED"
    SERVICE_EXTENSION = "SERVICE_EXTENSION"
    PAYMENT_FOLLOW_UP = "PAYMENT_FOLLOW_UP"
    BOOKING_CANCELLED = "BOOKING_CANCELLED"
