"""Logging and Prometheus metrics for KubeAction."""
