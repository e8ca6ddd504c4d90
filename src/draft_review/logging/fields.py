"""Canonical logging field names."""

TIMESTAMP = "timestamp"
LEVEL = "level"
LOGGER = "logger"
MESSAGE = "message"
EXCEPTION = "exception"

# Draft workflow correlation fields.
DRAFT_TRANSACTION_ID = "draft_transaction_id"
DRAFT_ID = "draft_id"
TARGET_TYPE = "target_type"
ACTION_TYPE = "action_type"
REVIEWED_BY = "reviewed_by"

SERVICE = "service"
ENVIRONMENT = "environment"
