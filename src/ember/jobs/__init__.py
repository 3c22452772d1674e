from ember.jobs.runner import CaptureJob, JobRunner
from ember.jobs.admission import AdmissionCounter, InMemoryAdmissionCounter
from ember.jobs.sweep import RetrySweepScheduler, sweep_retry_pending

__all__ = [
    "CaptureJob",
    "JobRunner",
    "AdmissionCounter",
    "InMemoryAdmissionCounter",
    "sweep_retry_pending",
    "RetrySweepScheduler",
]
