from enum import Enum

class VenueState(str, Enum):
    inactive = "inactive"
    active = "active"
    paused = "paused"

class VenueType(str, Enum):
    outdoor = "outdoor"
    indoor_complex = "indoor_complex"
    indoor_simple = "indoor_simple"

class AuditEventType(str, Enum):
    token_generation = "token_generation"
    qr_validation = "qr_validation"
    location_verification = "location_verification"
    mock_detection = "mock_detection"

class AuditResult(str, Enum):
    success = "success"
    failed = "failed"

class EntryReason(str, Enum):
    invalid_qr = "invalid_qr"
    venue_closed = "venue_closed"
    outside_radius = "outside_radius"
    mock_location = "mock_location"
    invalid_token = "invalid_token"
    expired_token = "expired_token"
    token_consumed = "token_consumed"
    invalid_binding = "invalid_binding"
