"""Registry file and pull-request text committed for an allocator application."""

from __future__ import annotations

import json
from datetime import date, datetime, timezone
from typing import Any
from urllib.parse import quote

from allocator_bot.control_plane.github.github_connector import FileChange
from allocator_bot.domain.allocator import AllocatorApplication

MULTISIG_ADDRESS_PREFIX = "f2"
RECORD_STATUS = "Active"
METAPATHWAY_TYPE = "Automatic"
BOT_FOOTER = (
    "<sup>This message was automatically generated by the Filecoin Plus Bot. "
    "For more information, visit [filecoin.io](https://filecoin.io)</sup>"
)


def branch_name(application: AllocatorApplication, prefix: str = "app") -> str:
    return f"{prefix}/{application.applicant.application_number}"


def record_path(application: AllocatorApplication) -> str:
    return f"allocators/{application.applicant.application_number}.json"


def pull_request_title(application: AllocatorApplication) -> str:
    return f"Add new allocator: {application.applicant.application_number}"


def build_application_record(application: AllocatorApplication) -> dict[str, Any]:
    applicant = application.applicant
    terms = application.terms
    record: dict[str, Any] = {
        "application_number": applicant.application_number,
        "address": applicant.address,
        "name": applicant.name,
        "organization": applicant.organization,
        "location": applicant.country,
        "status": RECORD_STATUS,
        "metapathway_type": METAPATHWAY_TYPE,
        "associated_org_addresses": applicant.address,
        "application": {
            "allocations": {"standardized": list(terms.standardized_allocations)},
            "target_clients": list(terms.target_clients),
            "required_sps": terms.required_operators,
            "required_replicas": terms.required_replicas,
            "tooling": [],
            "data_types": list(terms.data_types),
            "12m_requested": terms.twelve_month_request,
            "github_handles": [applicant.github_handle],
            "allocation_bookkeeping": terms.allocation_bookkeeping,
        },
        "poc": {
            "slack": applicant.slack_handle,
            "github_user": applicant.github_handle,
        },
    }
    if applicant.address.startswith(MULTISIG_ADDRESS_PREFIX):
        # Signers are filled in by the registry's own workflow.
        record["pathway_addresses"] = {"msig": applicant.address, "signer": []}
    return record


def application_file(application: AllocatorApplication) -> FileChange:
    return FileChange(
        path=record_path(application),
        content=json.dumps(build_application_record(application), indent=2),
    )


def render_pull_request_body(
    application: AllocatorApplication, submitted_on: date | None = None
) -> str:
    applicant = application.applicant
    submission_date = (submitted_on or datetime.now(timezone.utc).date()).isoformat()
    github_link = f"https://github.com/{applicant.github_handle}"
    badge = (
        f"[![GitHub](https://img.shields.io/badge/GitHub-{applicant.github_handle}"
        f"-181717?style=flat-square&logo=github)]({github_link})"
    )
    address_link = (
        f"[{applicant.address}](https://filfox.info/en/address/{quote(applicant.address, safe='')})"
    )
    rows = [
        ("Number", f"`{applicant.application_number}`"),
        ("Applicant", applicant.name),
        ("Organization", applicant.organization),
        ("Address", address_link),
        ("GitHub Username", badge),
        ("Country", applicant.country),
        ("Region", applicant.region),
        ("Type", f"`{applicant.allocator_type}`"),
        ("Submission Date", f"`{submission_date}`"),
    ]
    lines = [
        "# Filecoin Plus Allocator Application",
        "",
        "## Application Details",
        "| Field | Value |",
        "|-------|-------|",
        *[f"| {field} | {value} |" for field, value in rows],
        "",
        "---",
        BOT_FOOTER,
    ]
    return "\n".join(lines)
