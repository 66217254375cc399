"""Worker provisioning: plan, readiness polling, orchestration."""
