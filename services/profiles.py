"""Read-only resume and job views looked up by opaque id."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, Optional, Protocol

from agents.types import JobView, ResumeView


class ProfileDirectory(Protocol):
    def get_resume(self, resume_id: str) -> Optional[ResumeView]: ...

    def get_job(self, job_id: str) -> Optional[JobView]: ...


class InMemoryProfileDirectory:
    """Profiles held in dictionaries; optionally loaded from a JSON file."""

    def __init__(
        self,
        resumes: Optional[Dict[str, ResumeView]] = None,
        jobs: Optional[Dict[str, JobView]] = None,
    ) -> None:
        self._resumes: Dict[str, ResumeView] = dict(resumes or {})
        self._jobs: Dict[str, JobView] = dict(jobs or {})

    @classmethod
    def from_json(cls, path: str | Path) -> "InMemoryProfileDirectory":
        """Load ``{"resumes": {id: ...}, "jobs": {id: ...}}`` from ``path``."""

        data = json.loads(Path(path).read_text(encoding="utf-8"))
        resumes = {key: ResumeView.model_validate(value) for key, value in data.get("resumes", {}).items()}
        jobs = {key: JobView.model_validate(value) for key, value in data.get("jobs", {}).items()}
        return cls(resumes, jobs)

    def add_resume(self, resume_id: str, resume: ResumeView) -> None:
        self._resumes[resume_id] = resume

    def add_job(self, job_id: str, job: JobView) -> None:
        self._jobs[job_id] = job

    def get_resume(self, resume_id: str) -> Optional[ResumeView]:
        return self._resumes.get(resume_id)

    def get_job(self, job_id: str) -> Optional[JobView]:
        return self._jobs.get(job_id)


__all__ = ["InMemoryProfileDirectory", "ProfileDirectory"]
