"""
Configuration data model for worklog.

Defines the structure of `.worklog/config.yaml` and
`.worklog/config.defaults.yaml`. Keys are camelCase on disk
(`projectName`, `syncRemote`, ...) and snake_case in Python.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator

from worklog.core.sync.models import DEFAULT_GIT_BRANCH, DEFAULT_GIT_REMOTE, GitTarget

DEFAULT_DATA_FILE = ".worklog/worklog-data.jsonl"
DEFAULT_DB_FILE = ".worklog/worklog.db"


class WorklogConfig(BaseModel):
    """
    Project configuration.

    Example:
        >>> config = WorklogConfig(projectName="demo", prefix="DEMO")
        >>> config.sync_target()
        GitTarget(remote='origin', branch='refs/worklog/data')
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    project_name: str = Field(default="", alias="projectName")
    prefix: str = Field(default="WI", min_length=1, description="Prefix for generated item ids")
    sync_remote: str = Field(
        default=DEFAULT_GIT_REMOTE,
        alias="syncRemote",
        description="Git remote that holds the shared snapshot",
    )
    sync_branch: str = Field(
        default=DEFAULT_GIT_BRANCH,
        alias="syncBranch",
        description="Branch name or full ref that holds the shared snapshot",
    )
    auto_sync: bool = Field(
        default=False,
        alias="autoSync",
        description="Push after every local mutation",
    )
    data_file: str = Field(default=DEFAULT_DATA_FILE, alias="dataFile")
    db_file: str = Field(default=DEFAULT_DB_FILE, alias="dbFile")

    @field_validator("prefix")
    @classmethod
    def normalize_prefix(cls, v: str) -> str:
        return v.strip().upper()

    def sync_target(self) -> GitTarget:
        return GitTarget(remote=self.sync_remote, branch=self.sync_branch)
