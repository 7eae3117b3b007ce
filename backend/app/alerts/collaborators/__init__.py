"""
collaborators — External services the pipeline consumes but does not own.

Each collaborator exposes one async method:
    Geocoder.resolve(location_text)    → ResolvedLocation | None
    PlanGenerator.generate(snapshot)   → ResponsePlan

Collaborators raise TransientCollaboratorError for retryable failures.
Timeouts, retry and fallback policy live in the pipeline.
"""
