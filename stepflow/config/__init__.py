"""Runtime configuration for the step-flow runner."""
