"""Organization email compliance checker.

Finds organization members without a verified organization email address and
keeps a tracking issue open for each of them:
- configuration loaded from workflow inputs / `.env`
- structured logging
- membership scan over GraphQL, issue reconciliation over REST
"""

__version__ = "0.1.0"

from org_email_compliance.config import ComplianceSettings

__all__ = ["__version__", "ComplianceSettings"]
