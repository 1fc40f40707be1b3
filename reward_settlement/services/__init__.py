"""Service layer: external collaborators and the reward pipeline."""
