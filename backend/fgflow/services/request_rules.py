"""Request workflow invariants: statuses, stage ownership and allowed transitions."""

from __future__ import annotations

from dataclasses import dataclass

# Direct-shop request statuses (dsreqs)
STATUS_PENDING = "pending"
STATUS_MD_APPROVED = "md_approved_forwarded_to_ho"
STATUS_HO_APPROVED = "ho_approved_forwarded_to_fg"
STATUS_DISPATCHED = "dispatched"
STATUS_MD_REJECTED = "md_rejected"
STATUS_HO_REJECTED = "ho_rejected"

# Sales-request statuses (salesApprovalHistory and its source requests)
SALES_STATUS_PENDING = "pending"
SALES_STATUS_APPROVED = "Approved"
SALES_STATUS_REJECTED = "Rejected"
SALES_STATUS_SENT = "sent"

ROLE_MAIN_DIRECTOR = "MainDirector"
ROLE_HEAD_OF_OPERATIONS = "HeadOfOperations"
ROLE_FG_STORE_MANAGER = "FinishedGoodsStoreManager"
ROLE_SHOP_OWNER = "DirectShop"
ROLE_DISTRIBUTOR = "Distributor"
ROLE_DIRECT_REPRESENTATIVE = "DirectRepresentative"

_ROLE_ALIASES: dict[str, str] = {
    "md": ROLE_MAIN_DIRECTOR,
    "maindirector": ROLE_MAIN_DIRECTOR,
    "main_director": ROLE_MAIN_DIRECTOR,
    "ho": ROLE_HEAD_OF_OPERATIONS,
    "headofoperations": ROLE_HEAD_OF_OPERATIONS,
    "head_of_operations": ROLE_HEAD_OF_OPERATIONS,
    "fg": ROLE_FG_STORE_MANAGER,
    "finishedgoodsstoremanager": ROLE_FG_STORE_MANAGER,
    "fg_store_manager": ROLE_FG_STORE_MANAGER,
    "directshop": ROLE_SHOP_OWNER,
    "shop_owner": ROLE_SHOP_OWNER,
    "distributor": ROLE_DISTRIBUTOR,
    "directrepresentative": ROLE_DIRECT_REPRESENTATIVE,
    "direct_representative": ROLE_DIRECT_REPRESENTATIVE,
}

_DIRECT_SHOP_TRANSITIONS: dict[str, set[str]] = {
    STATUS_PENDING: {STATUS_MD_APPROVED, STATUS_MD_REJECTED},
    STATUS_MD_APPROVED: {STATUS_HO_APPROVED, STATUS_HO_REJECTED},
    STATUS_HO_APPROVED: {STATUS_DISPATCHED},
    STATUS_DISPATCHED: set(),
    STATUS_MD_REJECTED: set(),
    STATUS_HO_REJECTED: set(),
}
_SALES_TRANSITIONS: dict[str, set[str]] = {
    SALES_STATUS_PENDING: {SALES_STATUS_APPROVED, SALES_STATUS_REJECTED},
    SALES_STATUS_APPROVED: {SALES_STATUS_SENT},
    SALES_STATUS_REJECTED: set(),
    SALES_STATUS_SENT: set(),
}

DIRECT_SHOP_TERMINAL_STATUSES: frozenset[str] = frozenset(
    status for status, allowed in _DIRECT_SHOP_TRANSITIONS.items() if not allowed
)
SALES_TERMINAL_STATUSES: frozenset[str] = frozenset(
    status for status, allowed in _SALES_TRANSITIONS.items() if not allowed
)
SALES_APPROVER_ROLES: frozenset[str] = frozenset({ROLE_MAIN_DIRECTOR, ROLE_HEAD_OF_OPERATIONS})


@dataclass(frozen=True)
class ApprovalStage:
    """One approval stage of the direct-shop chain, owned by a single role."""

    role: str
    expected_status: str
    approved_status: str
    rejected_status: str
    field_prefix: str
    trail_key: str
    forward_key: str
    next_role: str
    notification_type: str
    default_comment: str


DIRECT_SHOP_STAGES: dict[str, ApprovalStage] = {
    ROLE_MAIN_DIRECTOR: ApprovalStage(
        role=ROLE_MAIN_DIRECTOR,
        expected_status=STATUS_PENDING,
        approved_status=STATUS_MD_APPROVED,
        rejected_status=STATUS_MD_REJECTED,
        field_prefix="md",
        trail_key="mdApproved",
        forward_key="forwardedToHO",
        next_role=ROLE_HEAD_OF_OPERATIONS,
        notification_type="direct_shop_request_forwarded",
        default_comment="Approved by Main Director",
    ),
    ROLE_HEAD_OF_OPERATIONS: ApprovalStage(
        role=ROLE_HEAD_OF_OPERATIONS,
        expected_status=STATUS_MD_APPROVED,
        approved_status=STATUS_HO_APPROVED,
        rejected_status=STATUS_HO_REJECTED,
        field_prefix="ho",
        trail_key="hoApproved",
        forward_key="forwardedToFG",
        next_role=ROLE_FG_STORE_MANAGER,
        notification_type="direct_shop_request_approved",
        default_comment="Approved by Head of Operations",
    ),
}


def normalize_role(role: str | None) -> str:
    if not role:
        return ""
    raw = role.strip()
    return _ROLE_ALIASES.get(raw.lower(), raw)


def approval_stage_for(role: str | None) -> ApprovalStage:
    normalized = normalize_role(role)
    stage = DIRECT_SHOP_STAGES.get(normalized)
    if stage is None:
        raise ValueError(f"Role {role or '<none>'} does not own a direct shop approval stage")
    return stage


def normalize_request_status(status: str | None) -> str:
    if not status:
        return STATUS_PENDING
    return status.strip()


def _validate(transitions: dict[str, set[str]], *, current_status: str | None, next_status: str, label: str) -> str:
    current = normalize_request_status(current_status)
    if current not in transitions:
        raise ValueError(f"Unknown {label} status: {current}")
    if next_status not in transitions[current]:
        raise ValueError(f"Invalid {label} status transition: {current} -> {next_status}")
    return next_status


def validate_direct_shop_transition(*, current_status: str | None, next_status: str) -> str:
    return _validate(_DIRECT_SHOP_TRANSITIONS, current_status=current_status, next_status=next_status, label="request")


def validate_sales_transition(*, current_status: str | None, next_status: str) -> str:
    return _validate(_SALES_TRANSITIONS, current_status=current_status, next_status=next_status, label="sales request")


def is_terminal_status(status: str | None) -> bool:
    current = normalize_request_status(status)
    return current in DIRECT_SHOP_TERMINAL_STATUSES or current in SALES_TERMINAL_STATUSES


def ensure_stage_not_recorded(*, workflow: dict | None, trail_key: str) -> None:
    if workflow and workflow.get(trail_key):
        raise ValueError(f"Approval stage {trail_key} is already recorded")


def require_reason(reason: str | None) -> str:
    text = (reason or "").strip()
    if not text:
        raise ValueError("Rejection reason is required")
    return text


def ensure_sales_approver(role: str | None) -> str:
    normalized = normalize_role(role)
    if normalized not in SALES_APPROVER_ROLES:
        raise ValueError(f"Role {role or '<none>'} cannot approve sales requests")
    return normalized
