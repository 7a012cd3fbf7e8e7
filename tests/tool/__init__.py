"""Tests for the helm-reconcile command line tool."""
