"""Workflow-engine core: exception hierarchy shared by services and blueprints."""
