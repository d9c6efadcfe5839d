"""Workflow definitions shipped with helmsman."""
