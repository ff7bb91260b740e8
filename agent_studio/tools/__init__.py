"""
Tool implementations bound to one project directory
"""
