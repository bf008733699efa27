"""Service layer: business logic, evaluators and notification fan-out."""
