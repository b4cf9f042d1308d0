"""Prometheus metrics for the step-up engine."""

from prometheus_client import Counter, Histogram

challenges_created = Counter(
    "stepup_challenges_created_total",
    "Step-up challenges created",
    ["challenge_type"],
)
challenge_responses = Counter(
    "stepup_challenge_responses_total",
    "Verification attempts recorded against challenges",
    ["method", "status"],
)
challenges_completed = Counter(
    "stepup_challenges_completed_total",
    "Challenges that reached the completed state",
    ["challenge_type"],
)
challenges_exhausted = Counter(
    "stepup_challenges_exhausted_total",
    "Challenges closed because the attempt budget ran out",
    ["challenge_type"],
)
dependency_failures = Counter(
    "stepup_dependency_failures_total",
    "Collaborator failures surfaced as DependencyFailure",
    ["dependency"],
)
verification_duration = Histogram(
    "stepup_verification_duration_seconds",
    "Time spent inside factor verifiers",
    ["method"],
)
