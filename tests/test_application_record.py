from __future__ import annotations

import json
from datetime import date

from allocator_bot.control_plane.github.application_record import (
    application_file,
    branch_name,
    build_application_record,
    pull_request_title,
    record_path,
    render_pull_request_body,
)
from allocator_bot.domain.allocator import (
    AllocatorApplication,
    ApplicantProfile,
    RequestedTerms,
)


def _application(address: str = "f1regular") -> AllocatorApplication:
    return AllocatorApplication(
        application_id="app-9",
        applicant=ApplicantProfile(
            name="Jane Allocator",
            organization="Acme Storage",
            country="Portugal",
            region="Europe",
            github_handle="jane",
            address=address,
            application_number="1042",
            slack_handle="@jane",
        ),
        terms=RequestedTerms(
            target_clients=["Enterprise", "Web3"],
            required_operators="5+",
            required_replicas="3",
            data_types=["Public Open Dataset"],
            standardized_allocations=["5PiB"],
            allocation_bookkeeping="https://github.com/acme/bookkeeping",
        ),
    )


def test_naming_uses_application_number() -> None:
    application = _application()
    assert branch_name(application) == "app/1042"
    assert branch_name(application, prefix="allocator") == "allocator/1042"
    assert record_path(application) == "allocators/1042.json"
    assert pull_request_title(application) == "Add new allocator: 1042"


def test_record_carries_registry_fields() -> None:
    record = build_application_record(_application())

    assert record["application_number"] == "1042"
    assert record["address"] == "f1regular"
    assert record["location"] == "Portugal"
    assert record["status"] == "Active"
    assert record["metapathway_type"] == "Automatic"
    assert record["associated_org_addresses"] == "f1regular"
    assert record["application"]["required_sps"] == "5+"
    assert record["application"]["12m_requested"] == 10
    assert record["application"]["github_handles"] == ["jane"]
    assert record["application"]["allocations"] == {"standardized": ["5PiB"]}
    assert record["poc"] == {"slack": "@jane", "github_user": "jane"}
    assert "pathway_addresses" not in record


def test_multisig_address_adds_pathway_addresses() -> None:
    record = build_application_record(_application(address="f2multisig"))
    assert record["pathway_addresses"] == {"msig": "f2multisig", "signer": []}


def test_application_file_is_pretty_json_at_record_path() -> None:
    change = application_file(_application())
    assert change.path == "allocators/1042.json"
    assert json.loads(change.content)["name"] == "Jane Allocator"
    assert change.content.startswith("{\n  ")


def test_pull_request_body_table() -> None:
    body = render_pull_request_body(_application(), submitted_on=date(2024, 5, 1))

    assert body.startswith("# Filecoin Plus Allocator Application")
    assert "| Number | `1042` |" in body
    assert "| Organization | Acme Storage |" in body
    assert "https://filfox.info/en/address/f1regular" in body
    assert "| Submission Date | `2024-05-01` |" in body
    assert "| Type | `Automatic` |" in body
    assert "Filecoin Plus Bot" in body
