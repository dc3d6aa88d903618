"""Status comment text for every (phase, phase status) pairing.

Messages live in one table keyed on both dimensions. The table is checked for
completeness over ``Phase x PhaseStatus`` at import time, so a new enum member
without a message fails loudly instead of falling through.
"""

from __future__ import annotations

from itertools import product

from allocator_bot.control_plane.github.application_record import BOT_FOOTER
from allocator_bot.domain.allocator import Phase, PhaseStatus

STATUS_EMOJI: dict[PhaseStatus, str] = {
    PhaseStatus.NOT_STARTED: "⚪",
    PhaseStatus.IN_PROGRESS: "🟡",
    PhaseStatus.COMPLETED: "🟢",
    PhaseStatus.FAILED: "🔴",
}

NEEDS_ASSISTANCE = """
### Need Assistance?
- For questions about the application process, please contact our support team

> 📞 We're here to help if you need any assistance
"""

APPLICATION_RECEIVED = """
### Application Received
- Your application has been received and is being prepared for review
- This thread will be updated as your application progresses

> 📬 No action is needed from you right now
"""

KYC_REQUIRED = """
### Next Steps
1. Complete the KYC process using the verification link sent to your registered contact
2. Your application will be automatically updated once submitted

> ℹ️ KYC completion is required to proceed with your application
"""

KYC_UNDER_REVIEW = """
### Current Status
- Your KYC submission is under review
- We'll update this thread once the process is complete

> ⏳ Thank you for your patience during this process
"""

KYC_COMPLETED = """
### KYC Completed
- Your KYC has been successfully completed
- Your application is now moving to the discussion phase

> ✅ Thank you for your cooperation in this process
"""

KYC_REJECTED = """
### KYC Rejected
- We regret to inform you that your KYC submission has been rejected

> ❌ Please contact our support team for more information
"""

DISCUSSION_PENDING = """
### Awaiting Governance Review
- Your application is queued for review by the Fil+ governance committee

> 🗂️ Reviewers will be assigned shortly
"""

DISCUSSION_IN_PROGRESS = """
### Discussion Phase
- Your application is currently under review by the Fil+ governance committee
- Discussion may be required to clarify certain aspects of your application

> 📝 Please be prepared to respond to any questions in this PR
"""

DISCUSSION_COMPLETED = """
### Discussion Completed
- The review process for your application has been completed
- Your application is now moving to the approval phase

> 👍 Your application has successfully passed the discussion phase
"""

DISCUSSION_REJECTED = """
### Discussion Rejected
- We regret to inform you that your application has been rejected

> ❌ Please contact our support team for more information
"""

APPROVAL_QUEUED = """
### Awaiting On-chain Approval
- Your application will be proposed to the on-chain signers shortly

> 🗳️ No action is needed from you right now
"""

APPROVAL_PENDING = """
### Approval Pending
- Your application is awaiting final approval from on-chain signers
- We'll update this thread once a decision has been made

> ⏳ The final decision is pending. Thank you for your patience.
"""

APPLICATION_APPROVED = """
### Application Approved
- Congratulations! Your application to become a datacap allocator has been approved
- You will receive further instructions shortly

> 🎉 Welcome to the Filecoin Plus community!
"""

APPLICATION_REJECTED = """
### Application Rejected
- We regret to inform you that your application has been rejected

> ❌ Please contact our support team for more information
"""

ALLOCATION_IN_PROGRESS = """
### Datacap Allocation In Progress
- Your allocator entry has been merged into the registry
- Your initial datacap allocation is being processed on-chain

> ⛓️ We'll update this thread once the allocation lands
"""

ALLOCATION_COMPLETED = """
### Datacap Allocated
- Your initial datacap allocation has been granted

> 🚀 You can now start onboarding clients
"""

ONBOARDING_COMPLETE = """
### Onboarding Complete
- Your allocator is fully onboarded

> 🎉 Welcome to the Filecoin Plus community!
"""

NS, IP, DONE, FAILED = (
    PhaseStatus.NOT_STARTED,
    PhaseStatus.IN_PROGRESS,
    PhaseStatus.COMPLETED,
    PhaseStatus.FAILED,
)

STATUS_MESSAGES: dict[tuple[Phase, PhaseStatus], str] = {
    (Phase.SUBMITTED, NS): APPLICATION_RECEIVED,
    (Phase.SUBMITTED, IP): APPLICATION_RECEIVED,
    (Phase.SUBMITTED, DONE): APPLICATION_RECEIVED,
    (Phase.SUBMITTED, FAILED): NEEDS_ASSISTANCE,
    (Phase.KYC, NS): KYC_REQUIRED,
    (Phase.KYC, IP): KYC_UNDER_REVIEW,
    (Phase.KYC, DONE): KYC_COMPLETED,
    (Phase.KYC, FAILED): KYC_REJECTED,
    (Phase.GOVERNANCE_REVIEW, NS): DISCUSSION_PENDING,
    (Phase.GOVERNANCE_REVIEW, IP): DISCUSSION_IN_PROGRESS,
    (Phase.GOVERNANCE_REVIEW, DONE): DISCUSSION_COMPLETED,
    (Phase.GOVERNANCE_REVIEW, FAILED): DISCUSSION_REJECTED,
    (Phase.RKH_APPROVAL, NS): APPROVAL_QUEUED,
    (Phase.RKH_APPROVAL, IP): APPROVAL_PENDING,
    (Phase.RKH_APPROVAL, DONE): APPLICATION_APPROVED,
    (Phase.RKH_APPROVAL, FAILED): APPLICATION_REJECTED,
    (Phase.DATACAP_ALLOCATION, NS): ALLOCATION_IN_PROGRESS,
    (Phase.DATACAP_ALLOCATION, IP): ALLOCATION_IN_PROGRESS,
    (Phase.DATACAP_ALLOCATION, DONE): ALLOCATION_COMPLETED,
    (Phase.DATACAP_ALLOCATION, FAILED): NEEDS_ASSISTANCE,
    (Phase.COMPLETE, NS): ONBOARDING_COMPLETE,
    (Phase.COMPLETE, IP): ONBOARDING_COMPLETE,
    (Phase.COMPLETE, DONE): ONBOARDING_COMPLETE,
    (Phase.COMPLETE, FAILED): NEEDS_ASSISTANCE,
}


def _check_complete() -> None:
    missing = [
        f"{phase.value}/{status.value}"
        for phase, status in product(Phase, PhaseStatus)
        if (phase, status) not in STATUS_MESSAGES
    ]
    if missing:
        raise RuntimeError(f"Status messages missing for: {', '.join(missing)}")


_check_complete()


def status_message(phase: Phase, status: PhaseStatus) -> str:
    return STATUS_MESSAGES.get((phase, status), NEEDS_ASSISTANCE)


def render_status_comment(phase: Phase, status: PhaseStatus) -> str:
    """Full status comment body posted on the application pull request."""

    header = f"\n## Application Status\n{STATUS_EMOJI.get(status, '❓')} `{phase.value}`\n\n"
    return f"{header}{status_message(phase, status)}\n---\n{BOT_FOOTER}\n"
