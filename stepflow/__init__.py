"""StepFlow: registry-driven step orchestration for model-backed agents."""

__version__ = "0.1.0"
