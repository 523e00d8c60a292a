# app/constants.py
"""
Centralized magic constants organized by domain.

All hardcoded numbers/strings used throughout the codebase should be
defined here with documentation explaining their purpose.
"""


class RetentionDefaults:
    """Default per-classification retention windows (days)."""

    PUBLIC_MIN_DAYS = 30                # General data retention
    PUBLIC_MAX_DAYS = 90
    INTERNAL_MIN_DAYS = 90              # Business records
    INTERNAL_MAX_DAYS = 365
    CONFIDENTIAL_MIN_DAYS = 365         # Regulatory compliance
    CONFIDENTIAL_MAX_DAYS = 2555        # 7 years
    RESTRICTED_MIN_DAYS = 2555          # 7 years
    RESTRICTED_MAX_DAYS = 0             # No ceiling, manual deletion only

    # Data type overrides (most restrictive window wins when several apply)
    CONFIDENTIAL_PII_MIN_DAYS = 365     # Audit trails
    CONFIDENTIAL_PII_MAX_DAYS = 2555
    RESTRICTED_PHI_MIN_DAYS = 2190      # 6 years (HIPAA minimum)
    RESTRICTED_PHI_MAX_DAYS = 0
    RESTRICTED_PCI_MIN_DAYS = 365       # 1 year (PCI-DSS)
    RESTRICTED_PCI_MAX_DAYS = 2555


class PolicyLimits:
    """Field limits for lifecycle policies and legal holds."""

    NAME_MAX_CHARS = 255
    DESCRIPTION_MAX_CHARS = 2000
    HOLD_REASON_MAX_CHARS = 1000
    SNAPSHOT_ID_MAX_CHARS = 255


class EnforcementDefaults:
    """Enforcement run settings."""

    INITIATED_BY_SCHEDULER = "scheduler"
    INITIATED_BY_ADMIN = "admin"
    INITIATED_BY_CLI = "cli"
    SOURCE_RETRY_MIN_WAIT_SECONDS = 0.5
    SOURCE_RETRY_MAX_WAIT_SECONDS = 8.0


class TimeConstants:
    """Time-related constants."""

    SECONDS_PER_DAY = 86400
