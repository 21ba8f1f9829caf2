"""GitOps Rollout engine (GRO).

Converges a live cluster toward the desired state recorded in a versioned
store and rolls out new image revisions progressively:
 - append-only desired-state history with a single current revision
 - debounced live-state observation that survives runtime outages
 - a per-resource reconciler state machine
 - surge/unavailability bounded, health-gated rollouts

Automatic rollback is intentionally not part of the engine.
"""
