from turnstile.approval.bus import EventBus
from turnstile.approval.gatekeeper import ApprovalGatekeeper

__all__ = ["ApprovalGatekeeper", "EventBus"]
