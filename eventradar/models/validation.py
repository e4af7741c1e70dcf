"""
Ingest Validation

Checks an inbound event record before any reference data is resolved or
anything is written, so that a rejected record leaves no rows behind.
"""

from typing import Any, Dict, List, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from eventradar.errors import ValidationError
from eventradar.models.event import EventIngest


logger = structlog.get_logger(__name__)

MIN_LATITUDE, MAX_LATITUDE = -90.0, 90.0
MIN_LONGITUDE, MAX_LONGITUDE = -180.0, 180.0


class ValidationResult:
    """Result of validation operations"""

    def __init__(self, is_valid: bool = True, errors: Optional[List[str]] = None):
        self.is_valid = is_valid
        self.errors = errors or []

    def add_error(self, error: str):
        """Add an error to the validation result"""
        self.errors.append(error)
        self.is_valid = False

    def __bool__(self):
        return self.is_valid

    def __str__(self):
        if self.is_valid:
            return "Valid"
        return f"Invalid: {'; '.join(self.errors)}"


def _is_blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


class IngestValidator:
    """Validates inbound event records"""

    def __init__(self):
        self.logger = logger.bind(component="ingest_validator")

    def validate(self, record: EventIngest) -> ValidationResult:
        """
        Validate a single inbound record.

        Args:
            record: Record to validate

        Returns:
            ValidationResult listing every problem found
        """
        result = ValidationResult()

        if _is_blank(record.title):
            result.add_error("Title is required")

        if record.latitude is None:
            result.add_error("Latitude is required")
        elif not MIN_LATITUDE <= record.latitude <= MAX_LATITUDE:
            result.add_error(f"Latitude must be between -90 and 90, got {record.latitude}")

        if record.longitude is None:
            result.add_error("Longitude is required")
        elif not MIN_LONGITUDE <= record.longitude <= MAX_LONGITUDE:
            result.add_error(f"Longitude must be between -180 and 180, got {record.longitude}")

        if record.start_time is None:
            result.add_error("Start time is required")
        elif record.end_time is not None and record.end_time < record.start_time:
            result.add_error("End time must not be before start time")

        if _is_blank(record.category):
            result.add_error("Category is required")

        if _is_blank(record.source):
            result.add_error("Source is required")

        if record.capacity is not None and record.capacity < 0:
            result.add_error("Capacity must not be negative")

        if not result:
            self.logger.debug("Ingest record rejected", title=record.title, errors=result.errors)

        return result


_ingest_validator = IngestValidator()


def validate_ingest_record(record: EventIngest) -> ValidationResult:
    """Validate a record using the shared validator"""
    return _ingest_validator.validate(record)


def describe_type_errors(errors: List[Dict[str, Any]]) -> List[str]:
    """Flatten pydantic error entries into ``field: message`` strings."""
    messages = []
    for item in errors:
        location = ".".join(str(part) for part in item["loc"])
        messages.append(f"{location}: {item['msg']}" if location else item["msg"])
    return messages


def parse_ingest_record(raw: Any) -> EventIngest:
    """
    Parse one raw inbound record.

    Args:
        raw: A mapping as delivered by a feed, or an already parsed record

    Returns:
        The parsed record

    Raises:
        ValidationError: If a field has the wrong type or the record is not an object
    """
    if isinstance(raw, EventIngest):
        return raw
    try:
        return EventIngest.model_validate(raw)
    except PydanticValidationError as e:
        raise ValidationError(describe_type_errors(e.errors())) from e
