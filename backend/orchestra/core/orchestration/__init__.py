"""
Orchestration core.

Components, leaf-first:
- StatusTransitionEngine: the only writer of task status, pr_url and debug_log
- normalize_webhook: multi-shape callback payload parsing
- WebhookDispatcher: routes FINISHED / RUNNING / ERROR callbacks
- AgentDispatchPipeline: launches an agent for one task
- EpicStartWorkflow: starts an epic and queues its first pending task
- MergeCompletionPipeline: merges the PR and cleans up the branch
- JobQueue / Worker: at-least-once background execution

Import from the submodules directly.
"""
