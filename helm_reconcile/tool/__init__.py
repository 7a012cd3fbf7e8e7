"""Command line tool for helm-reconcile."""
