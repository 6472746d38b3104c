"""AgentJobWorkflow: one instance per agent job, started once at job creation.

Workflow ID = ``agent-job-<job_id>``, so Temporal itself rejects a second
start for the same job. The single activity is never retried: the job as a
whole is the unit of retry, and a rerun would trip the state machine anyway.
"""

from __future__ import annotations

from datetime import timedelta

from temporalio import workflow
from temporalio.common import RetryPolicy

with workflow.unsafe.imports_passed_through():
    from concierge.activities.agent_runner import run_agent_job

_AGENT_JOB_RETRY = RetryPolicy(maximum_attempts=1)

# Above the runner's own deadline so the activity always reports a status
_AGENT_JOB_TIMEOUT = timedelta(minutes=5)


def workflow_id_for(job_id: str) -> str:
    return f"agent-job-{job_id}"


@workflow.defn
class AgentJobWorkflow:
    @workflow.run
    async def run(self, job_id: str) -> str:
        return await workflow.execute_activity(
            run_agent_job,
            job_id,
            start_to_close_timeout=_AGENT_JOB_TIMEOUT,
            retry_policy=_AGENT_JOB_RETRY,
        )
