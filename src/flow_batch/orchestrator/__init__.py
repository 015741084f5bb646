"""Orchestration core: submission, event correlation, harvest and downloads.

All components share nothing but a `JobStore` handle. The Actuator and
Observer are external collaborators described in `contracts`.
"""
