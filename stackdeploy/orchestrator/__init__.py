"""Stack orchestration: plan construction, deploy and teardown."""

from stackdeploy.orchestrator.plan import access_info, build_plan, endpoint_url, issue_credentials
from stackdeploy.orchestrator.stack import StackOrchestrator

__all__ = [
    "StackOrchestrator",
    "access_info",
    "build_plan",
    "endpoint_url",
    "issue_credentials",
]
