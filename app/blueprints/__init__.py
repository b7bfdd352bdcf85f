"""
AI Company Workflow Engine
Blueprint registry.
"""
