"""
Rule set and rule evaluation models.

The user-authored rule set (``when``/``then`` blocks) is modelled with frozen
Pydantic models so that a loaded configuration cannot be mutated while rules
execute. The per-run values the engine consumes and produces (event context,
task creation specs, execution result) are plain dataclasses, matching how the
rest of the package represents domain data.

Example:
    Loading a single rule::

        rule = Rule.model_validate(
            {
                "when": {"event": "pull_request", "action": "opened"},
                "then": {"update_fields": {"1201": "In Review"}},
            }
        )
"""

from dataclasses import dataclass, field

from pydantic import BaseModel, ConfigDict, Field, SecretStr

# Field map key the engine uses to request task completion
MARK_COMPLETE_KEY = "__mark_complete"


class _FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class Condition(_FrozenModel):
    """The ``when`` block: an AND-only predicate over the event context."""

    event: str = Field(..., description="GitHub event name (pull_request, issues)")
    action: str | tuple[str, ...] | None = Field(
        default=None, description="Event action or list of accepted actions"
    )
    merged: bool | None = Field(default=None, description="Required PR merged state")
    draft: bool | None = Field(default=None, description="Required PR draft state")
    label: str | None = Field(default=None, description="Exact name of the label that triggered the event")
    has_labels: str | tuple[str, ...] | None = Field(
        default=None, description="At least one of these labels must be on the PR/issue"
    )
    has_asana_tasks: bool | None = Field(
        default=None, description="Whether the body must (not) reference Asana tasks"
    )
    author: str | tuple[str, ...] | None = Field(default=None, description="PR/issue author login(s)")


class CreateTaskAction(_FrozenModel):
    """The ``create_task`` action: a task to create when no task is linked yet."""

    project: str = Field(..., description="Project GID the task is added to")
    workspace: str = Field(..., description="Workspace GID")
    section: str | None = Field(default=None, description="Optional section GID within the project")
    title: str = Field(..., description="Task name template")
    notes: str | None = Field(default=None, description="Plain-text description template")
    html_notes: str | None = Field(default=None, description="Rich-text description template")
    assignee: str | None = Field(default=None, description="Assignee template (Asana user GID or email)")
    initial_fields: dict[str, str] = Field(
        default_factory=dict, description="Custom field GID to value template"
    )


class Action(_FrozenModel):
    """The ``then`` block: independent effects contributed by a matched rule."""

    update_fields: dict[str, str] = Field(
        default_factory=dict, description="Custom field GID to value template"
    )
    mark_complete: bool = Field(default=False, description="Mark linked tasks complete")
    post_pr_comment: str | None = Field(default=None, description="Comment template posted after execution")
    attach_pr_to_tasks: bool = Field(
        default=False, description="Attach the PR to linked tasks through the Asana integration"
    )
    create_task: CreateTaskAction | None = Field(default=None, description="Task to create")


class Rule(_FrozenModel):
    """A (condition, action) pair."""

    when: Condition
    then: Action


class RulesConfig(_FrozenModel):
    """A validated, immutable rule set plus the run-wide settings it needs."""

    rules: tuple[Rule, ...]
    user_mappings: dict[str, str] = Field(
        default_factory=dict, description="GitHub login to Asana user GID"
    )
    integration_secret: SecretStr | None = Field(
        default=None, description="Secret for the Asana GitHub integration widget"
    )
    comment_on_pr_when_asana_url_missing: bool = Field(
        default=False, description="Ask for a task link on PRs that reference no Asana task"
    )


@dataclass(frozen=True)
class PullRequestInfo:
    """Pull request fields available to conditions and templates."""

    number: int
    title: str
    body: str
    merged: bool
    draft: bool
    author: str
    base_ref: str
    head_ref: str
    url: str
    assignee: str | None = None


@dataclass(frozen=True)
class IssueInfo:
    """Issue fields available to conditions and templates."""

    number: int
    title: str
    body: str
    author: str
    url: str
    state: str = "open"
    assignee: str | None = None


@dataclass(frozen=True)
class RuleContext:
    """Read-only projection of one triggering event.

    Exactly one of ``pr`` and ``issue`` is set, depending on the event name.
    ``label`` is only set for labeled/unlabeled events, ``labels`` only when
    the payload carried the full label list.
    """

    event_name: str
    action: str
    has_asana_tasks: bool
    pr: PullRequestInfo | None = None
    issue: IssueInfo | None = None
    label: str | None = None
    labels: tuple[str, ...] | None = None
    comments: str | None = None
    user_mappings: dict[str, str] | None = None

    @property
    def author(self) -> str:
        """Author of the PR or issue, empty when neither is present."""
        if self.pr is not None:
            return self.pr.author
        if self.issue is not None:
            return self.issue.author
        return ""


@dataclass
class CreateTaskSpec:
    """Template-resolved form of a ``create_task`` action."""

    action: CreateTaskAction
    title: str
    notes: str | None = None
    html_notes: str | None = None
    assignee: str | None = None
    initial_fields: dict[str, str] = field(default_factory=dict)


@dataclass
class RuleExecutionResult:
    """Everything the matched rules asked for, ready for execution.

    Attributes:
        field_updates: Field GID to resolved value, in first-write order.
            Contains ``MARK_COMPLETE_KEY`` when any matched rule set
            ``mark_complete``.
        comment_templates: Raw ``post_pr_comment`` templates in rule order.
        task_creation_specs: Resolved ``create_task`` actions.
        attach_pr_to_tasks: Whether any matched rule asked for the PR to be
            attached to linked tasks.
    """

    field_updates: dict[str, str] = field(default_factory=dict)
    comment_templates: list[str] = field(default_factory=list)
    task_creation_specs: list[CreateTaskSpec] = field(default_factory=list)
    attach_pr_to_tasks: bool = False

    @property
    def mark_complete(self) -> bool:
        return MARK_COMPLETE_KEY in self.field_updates

    @property
    def custom_field_updates(self) -> dict[str, str]:
        """Field updates without the completion sentinel."""
        return {gid: value for gid, value in self.field_updates.items() if gid != MARK_COMPLETE_KEY}

    @property
    def is_empty(self) -> bool:
        return not (self.field_updates or self.comment_templates or self.task_creation_specs or self.attach_pr_to_tasks)


@dataclass(frozen=True)
class TaskResult:
    """Outcome of one task update or creation, reported back to comments."""

    gid: str
    name: str
    url: str
    success: bool
