"""KubeAction: event-driven HTTP automation for Kubernetes resources."""

__version__ = "0.1.0"
