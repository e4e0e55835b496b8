"""Organization membership scan.

Pages through ``organization.membersWithRole`` (100 members per page) and
returns the logins of members with no email address on a domain the
organization has verified.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from org_email_compliance.errors import ScanError
from org_email_compliance.github.client import ComplianceClient

logger = logging.getLogger(__name__)

MEMBERS_QUERY = """
query($org: String!, $page: String) {
  organization(login: $org) {
    membersWithRole(first: 100, after: $page) {
      pageInfo {
        endCursor
        hasNextPage
      }
      nodes {
        login
        organizationVerifiedDomainEmails(login: $org)
      }
    }
  }
}
"""


@dataclass(frozen=True, slots=True)
class Member:
    login: str
    verified_domain_emails: tuple[str, ...] = ()

    @property
    def verified_domain_email_count(self) -> int:
        return len(self.verified_domain_emails)

    @property
    def is_offending(self) -> bool:
        """True when the member has no verified domain email."""

        return not self.verified_domain_emails

    @classmethod
    def from_node(cls, node: dict[str, Any]) -> Member:
        login = node.get("login")
        if not isinstance(login, str) or not login.strip():
            raise ScanError("Member node is missing a login")
        emails = node.get("organizationVerifiedDomainEmails") or []
        if not isinstance(emails, list):
            raise ScanError(f"Unexpected verified email list for {login}")
        return cls(login=login, verified_domain_emails=tuple(str(e) for e in emails))


def _members_connection(data: dict[str, Any], org: str) -> dict[str, Any]:
    organization = data.get("organization")
    if not isinstance(organization, dict):
        raise ScanError(f"Organization not found: {org}")
    connection = organization.get("membersWithRole")
    if not isinstance(connection, dict):
        raise ScanError(f"Unexpected membersWithRole response for {org}")
    return connection


def fetch_members(client: ComplianceClient, org: str) -> list[Member]:
    """Return every member of ``org`` in API order, following all pages."""

    members: list[Member] = []
    cursor: str | None = None
    has_next_page = True
    page = 0

    while has_next_page:
        data = client.graphql(MEMBERS_QUERY, {"org": org, "page": cursor})
        connection = _members_connection(data, org)

        nodes = connection.get("nodes") or []
        members.extend(Member.from_node(node) for node in nodes if isinstance(node, dict))

        page_info = connection.get("pageInfo") or {}
        has_next_page = bool(page_info.get("hasNextPage"))
        end_cursor = page_info.get("endCursor")
        if has_next_page and (not isinstance(end_cursor, str) or end_cursor == cursor):
            raise ScanError("Membership pagination did not advance")
        cursor = end_cursor
        page += 1
        logger.debug("Fetched member page", extra={"org": org, "page": page, "members": len(members)})

    logger.info("Fetched organization members", extra={"org": org, "members": len(members)})
    return members


def scan(client: ComplianceClient, org: str) -> list[str]:
    """Return logins of members of ``org`` with zero verified domain emails.

    Any error aborts the scan; no partial list is returned.
    """

    offending = [member.login for member in fetch_members(client, org) if member.is_offending]
    logger.info("Found offending members", extra={"org": org, "offending": len(offending)})
    return offending
