"""Vital-sign risk assessment for telehealth monitoring.

This package contains the scoring rules, the AI-backed analysis with its
rule-based fallback, and the streaming/history plumbing around them.
"""
