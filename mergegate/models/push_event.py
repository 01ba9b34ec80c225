"""
Push Event Model
================
Pydantic models for the trigger input.

PushEvent is built from a webhook payload. Two payload shapes are accepted:
    - GitHub style:  {"ref": "refs/heads/new", "after": "<sha>", ...}
    - Flat:          {"branch": "new", "commit": "<sha>"}

from_payload() returns None for anything it cannot read; malformed events
are never matched and never raise.
"""
from datetime import datetime, timezone
from typing import Any, Optional, NamedTuple
from pydantic import BaseModel, Field, ValidationError

_BRANCH_REF_PREFIX = "refs/heads/"
_ZERO_SHA = "0" * 40


class BranchPair(NamedTuple):
    source: str
    target: str

    def __str__(self) -> str:
        return f"{self.source}->{self.target}"


class PushEvent(BaseModel):
    branch: str = Field(min_length=1)
    commit: str = Field(min_length=1)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    pusher: str = ""
    compare_url: str = ""

    @classmethod
    def from_payload(cls, payload: Any) -> Optional["PushEvent"]:
        if not isinstance(payload, dict):
            return None

        ref = payload.get("ref")
        if isinstance(ref, str):
            # Tag pushes and branch deletions never qualify
            if not ref.startswith(_BRANCH_REF_PREFIX) or payload.get("deleted"):
                return None
            branch = ref[len(_BRANCH_REF_PREFIX):]
            commit = payload.get("after", "")
            pusher = payload.get("pusher") or {}
            fields = {
                "branch": branch,
                "commit": commit,
                "pusher": pusher.get("name", "") if isinstance(pusher, dict) else "",
                "compare_url": payload.get("compare") or "",
            }
        else:
            fields = {
                "branch": payload.get("branch", ""),
                "commit": payload.get("commit", ""),
            }
            if payload.get("timestamp"):
                fields["timestamp"] = payload["timestamp"]

        if fields["commit"] == _ZERO_SHA:
            return None

        try:
            return cls(**fields)
        except ValidationError:
            return None
