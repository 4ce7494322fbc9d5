"""Graceful EKS + VPC teardown with dependency-aware, best-effort phases."""
