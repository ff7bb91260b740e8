"""
Tool catalog loading and system prompt construction
"""
